from subly.stellar.transfer import StellarValueTransfer

__all__ = ["StellarValueTransfer"]
