"""Credit-card statement decryption, parsing and categorization"""

__version__ = "0.1.0"
