import argparse
import json
import sys
from typing import List, Optional

from . import chain
from .errors import LedgerFormatError


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Verify an exported vote ledger offline.")
    parser.add_argument("path", help="ledger.json exported from the voting service")
    parser.add_argument("--receipt", help="check that this receipt (full hash or prefix) is included")
    args = parser.parse_args(argv)

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            ledger = chain.parse_ledger_document(json.load(f))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read {args.path}: {e}")
        return 1
    except LedgerFormatError as e:
        print(f"Invalid ledger format: {e}")
        return 1

    result = chain.verify(ledger)
    if not result.ok:
        print(f"Ledger tampered at entry #{result.failingIndex + 1}")
        return 1
    print(f"Ledger OK ({len(ledger)} entries)")

    if args.receipt:
        found = chain.find_receipt(ledger, args.receipt)
        if found is None:
            print(f"Receipt {args.receipt} not found")
            return 1
        index, record = found
        print(f"Receipt found at entry #{index + 1}: {record.candidate}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
