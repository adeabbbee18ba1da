"""CSV output writer with standardized formatting and organization."""

import csv
import json
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

from ..models.core import CanonicalTransaction, StatementOutcome


logger = logging.getLogger(__name__)


class CSVWriter:
    """Handles CSV output with standardized formatting and organization"""

    # Standard CSV column headers in the unified format
    STANDARD_HEADERS = [
        'txn_id',
        'date',
        'description',
        'merchant_norm',
        'amount',
        'direction',
        'category',
        'tier',
        'excluded',
        'exclusion_reason',
    ]

    def __init__(self, output_directory: str = "data"):
        self.output_directory = output_directory

    def write_transactions(self, transactions: List[CanonicalTransaction], output_path: str) -> bool:
        """
        Write transactions to CSV file with standardized format

        Args:
            transactions: Categorized transactions to write
            output_path: Path where CSV file should be written

        Returns:
            True if successful, False otherwise
        """
        if not transactions:
            return False

        try:
            output_dir = os.path.dirname(output_path)
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)

            with open(output_path, 'w', newline='', encoding='utf-8') as csvfile:
                writer = csv.DictWriter(csvfile, fieldnames=self.STANDARD_HEADERS)
                writer.writeheader()
                for transaction in transactions:
                    writer.writerow(self._transaction_to_dict(transaction))

            logger.info(f"Wrote {len(transactions)} transaction(s) to {output_path}")
            return True

        except (OSError, csv.Error) as e:
            logger.error(f"Failed to write {output_path}: {e}")
            return False

    def generate_output_path(self, outcome: StatementOutcome) -> str:
        """
        Generate output file path from the statement's bank and original filename

        Returns:
            <output_directory>/<bank>/<filename>.csv
        """
        bank_dir = (outcome.bank_code or 'unknown').lower().replace(' ', '_')
        stem = os.path.splitext(os.path.basename(outcome.filename))[0] or outcome.statement_id
        csv_filename = f"{stem}.csv"
        return os.path.join(self.output_directory, bank_dir, csv_filename)

    def create_unique_filename(self, base_path: str) -> str:
        """
        Create unique filename if file already exists

        Args:
            base_path: Base file path

        Returns:
            Unique file path (may have suffix added)
        """
        if not os.path.exists(base_path):
            return base_path

        path_without_ext, ext = os.path.splitext(base_path)

        counter = 1
        while counter <= 999:
            new_path = f"{path_without_ext}_{counter:03d}{ext}"
            if not os.path.exists(new_path):
                return new_path
            counter += 1

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{path_without_ext}_{timestamp}{ext}"

    def write_outcomes(self, outcomes: List[StatementOutcome]) -> Dict[str, str]:
        """
        Write one CSV per succeeded statement

        Returns:
            Mapping of statement_id to the written CSV path
        """
        written = {}
        for outcome in outcomes:
            if not outcome.succeeded or not outcome.extraction:
                continue
            output_path = self.create_unique_filename(self.generate_output_path(outcome))
            if self.write_transactions(outcome.extraction.transactions, output_path):
                written[outcome.statement_id] = output_path
        return written

    def write_batch_report(self, outcomes: List[StatementOutcome],
                           output_path: Optional[str] = None) -> str:
        """Dump every outcome, failures included, as one JSON document"""
        if output_path is None:
            output_path = os.path.join(
                self.output_directory,
                f"batch_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
            )

        report = {
            'report_timestamp': datetime.now().isoformat(),
            'total_statements': len(outcomes),
            'succeeded': sum(1 for o in outcomes if o.succeeded),
            'failed': sum(1 for o in outcomes if not o.succeeded),
            'outcomes': [o.to_dict() for o in outcomes],
        }

        output_dir = os.path.dirname(output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, default=str)

        logger.info(f"Batch report written to {output_path}")
        return output_path

    def validate_csv_output(self, csv_path: str) -> List[str]:
        """
        Validate generated CSV file for data integrity

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not os.path.exists(csv_path):
            errors.append(f"CSV file does not exist: {csv_path}")
            return errors

        try:
            with open(csv_path, 'r', encoding='utf-8') as csvfile:
                reader = csv.DictReader(csvfile)

                if reader.fieldnames != self.STANDARD_HEADERS:
                    errors.append(f"Invalid headers. Expected: {self.STANDARD_HEADERS}, Got: {reader.fieldnames}")

                row_count = 0
                for row_num, row in enumerate(reader, start=2):
                    row_count += 1

                    for required in ('txn_id', 'date', 'amount', 'description', 'category'):
                        if not row.get(required):
                            errors.append(f"Row {row_num}: Missing {required}")

                    if row.get('date'):
                        try:
                            datetime.strptime(row['date'], '%Y-%m-%d')
                        except ValueError:
                            errors.append(f"Row {row_num}: Invalid date format: {row['date']}")

                    if row.get('amount'):
                        try:
                            float(row['amount'])
                        except ValueError:
                            errors.append(f"Row {row_num}: Invalid amount format: {row['amount']}")

                if row_count == 0:
                    errors.append("CSV file contains no data rows")

        except (csv.Error, UnicodeDecodeError) as e:
            errors.append(f"Error reading CSV file: {str(e)}")

        return errors

    def _transaction_to_dict(self, transaction: CanonicalTransaction) -> Dict[str, str]:
        """Convert a CanonicalTransaction to a CSV row"""
        return {
            'txn_id': transaction.txn_id,
            'date': transaction.date.strftime('%Y-%m-%d'),
            'description': transaction.description or '',
            'merchant_norm': transaction.merchant_norm,
            'amount': str(transaction.amount),
            'direction': transaction.direction.value,
            'category': transaction.category.value,
            'tier': transaction.tier,
            'excluded': 'true' if transaction.excluded else 'false',
            'exclusion_reason': transaction.exclusion_reason or '',
        }
