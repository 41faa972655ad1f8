from inboxvault.services.crypto.utils import constant_time_equal

__all__ = ["constant_time_equal"]
