from .utils import load_bank_csv, load_stripe_csv, read_text

__all__ = ["load_stripe_csv", "load_bank_csv", "read_text"]
