"""Command-line interface for the card statement pipeline."""

import os
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import logging

import click

from .models.core import Direction, HolderDetails, RawTransaction, StatementOutcome, StatementSource
from .pipeline import StatementPipeline
from .utils.category_normalizer import CategoryNormalizer
from .utils.config_manager import ConfigManager, get_default_config_manager
from .utils.csv_writer import CSVWriter
from .utils.error_handler import ErrorHandler, StatementError
from .utils.password_generator import PasswordCandidateGenerator, describe_candidates
from .utils.spend_filter import SpendFilter


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class CardStatementsCLI:
    """Main CLI class for the card statement pipeline"""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize CLI with configuration"""
        self.config_manager = ConfigManager(config_path) if config_path else get_default_config_manager()
        self.config = self.config_manager.load_config()
        self._error_handler: Optional[ErrorHandler] = None

    @property
    def error_handler(self) -> ErrorHandler:
        # created on first use so read-only commands leave no log files behind
        if self._error_handler is None:
            self._error_handler = ErrorHandler(log_directory=self.config.log_directory)
        return self._error_handler

    def process_files(self,
                      file_paths: List[str],
                      bank_code: str,
                      holder: HolderDetails,
                      output_directory: Optional[str] = None,
                      report_path: Optional[str] = None,
                      max_workers: Optional[int] = None) -> Dict[str, Any]:
        """Run the pipeline over statement files and write CSVs plus a batch report"""
        sources = []
        for file_path in file_paths:
            with open(file_path, 'rb') as handle:
                sources.append(StatementSource(
                    data=handle.read(),
                    bank_code=bank_code,
                    filename=os.path.basename(file_path),
                ))

        pipeline = StatementPipeline.from_config_manager(
            self.config_manager, error_handler=self.error_handler
        )
        outcomes = pipeline.process_batch(sources, holder, max_workers=max_workers)

        writer = CSVWriter(output_directory or self.config.output_directory)
        written = writer.write_outcomes(outcomes)
        report = writer.write_batch_report(outcomes, report_path)

        return {
            'outcomes': outcomes,
            'written': written,
            'report': report,
            'failed': [o for o in outcomes if not o.succeeded],
        }

    def candidates(self, bank_code: str, holder: HolderDetails) -> List[str]:
        bank_rules = self.config_manager.load_bank_rules()
        found = PasswordCandidateGenerator(bank_rules).generate(bank_code, holder)
        rule = bank_rules.get(bank_code)
        return describe_candidates(found[:rule.max_password_attempts])

    def categorize(self, description: str, amount: Decimal, direction: Direction,
                   vendor_category: Optional[str] = None,
                   vendor_sub_category: Optional[str] = None) -> Dict[str, Any]:
        """Run the category cascade and spend filter over one transaction"""
        tables = self.config_manager.load_merchant_tables()
        normalizer = CategoryNormalizer(tables, self.config.aggregator_policy)
        raw = RawTransaction(
            date=date.today(),
            description=description,
            amount=amount,
            direction=direction,
            vendor_category=vendor_category.upper() if vendor_category else None,
            vendor_sub_category=vendor_sub_category.upper() if vendor_sub_category else None,
        )
        txn = SpendFilter(tables).apply([normalizer.categorize(raw, "cli")]).transactions[0]
        return {
            'category': txn.category.value,
            'tier': txn.tier,
            'confidence': txn.tier_confidence,
            'excluded': txn.excluded,
            'exclusion_reason': txn.exclusion_reason,
            'merchant_norm': txn.merchant_norm,
        }

    def generate_config_template(self, output_path: str) -> bool:
        """Generate configuration template file"""
        try:
            self.config_manager.save_config_template(output_path)
            return True
        except Exception as e:
            logger.error(f"Failed to generate config template: {e}")
            return False


def _holder_from_options(name, dob, card, password) -> HolderDetails:
    try:
        return HolderDetails.from_inputs(name=name, dob=dob, card_digits=list(card), password=password)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--dob')


def _echo_outcome(outcome: StatementOutcome):
    if outcome.succeeded:
        extraction = outcome.extraction
        flag = " (low confidence)" if extraction.low_confidence else ""
        click.echo(f"✓ {outcome.filename}: {len(extraction.transactions)} transaction(s), "
                   f"spend {extraction.total_spend}, confidence {extraction.confidence:.0f}{flag}")
        for reason, count in sorted(extraction.excluded_reasons.items()):
            click.echo(f"    excluded {count} x {reason}")
    else:
        click.echo(f"✗ {outcome.filename}: [{outcome.failure_code}] {outcome.failure_reason}")


# CLI Commands using Click
@click.group()
@click.option('--config', '-c', help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """Card Statements - Decrypt, parse and categorize credit-card statements"""

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    try:
        ctx.obj['cli'] = CardStatementsCLI(config)
    except ValueError as e:
        click.echo(f"✗ Invalid configuration: {e}")
        sys.exit(1)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--bank', '-b', required=True, help='Issuer code, e.g. hdfc')
@click.option('--name', help='Card holder name as printed on the card')
@click.option('--dob', help='Date of birth, DDMMYYYY or DD/MM/YYYY')
@click.option('--card', multiple=True, help='Trailing card digits (repeatable)')
@click.option('--password', help='Statement password, tried before any derived candidate')
@click.option('--output', '-o', help='Output directory for CSV files')
@click.option('--report', '-r', help='Path for the JSON batch report')
@click.option('--workers', type=int, help='Statements processed in parallel')
@click.pass_context
def process(ctx, files, bank, name, dob, card, password, output, report, workers):
    """Process encrypted statement PDFs"""

    cli_instance = ctx.obj['cli']
    holder = _holder_from_options(name, dob, card, password)

    click.echo(f"Processing {len(files)} statement(s)...")
    try:
        result = cli_instance.process_files(
            list(files), bank, holder,
            output_directory=output, report_path=report, max_workers=workers,
        )
    except (OSError, ValueError) as e:
        click.echo(f"✗ Error during processing: {str(e)}")
        sys.exit(1)

    for outcome in result['outcomes']:
        _echo_outcome(outcome)
    click.echo(f"  Report saved: {result['report']}")

    if result['failed']:
        click.echo(f"✗ {len(result['failed'])} statement(s) failed")
        sys.exit(1)
    click.echo("✓ Processing completed successfully")


@cli.command()
@click.option('--bank', '-b', required=True, help='Issuer code, e.g. hdfc')
@click.option('--name', help='Card holder name')
@click.option('--dob', help='Date of birth')
@click.option('--card', multiple=True, help='Trailing card digits (repeatable)')
@click.pass_context
def candidates(ctx, bank, name, dob, card):
    """Show the masked password candidates that would be tried"""

    cli_instance = ctx.obj['cli']
    holder = _holder_from_options(name, dob, card, None)
    try:
        masked = cli_instance.candidates(bank, holder)
    except StatementError as e:
        click.echo(f"✗ [{e.code}] {e}")
        sys.exit(1)

    click.echo(f"{len(masked)} candidate(s) for {bank.lower()}:")
    for i, entry in enumerate(masked, 1):
        click.echo(f"  {i:2d}. {entry}")


@cli.command()
@click.argument('description')
@click.option('--amount', default='0', help='Transaction amount')
@click.option('--vendor-category', help='Issuer category label, e.g. FOOD')
@click.option('--vendor-sub-category', help='Issuer sub-category label')
@click.option('--credit', is_flag=True, help='Treat the line as a credit')
@click.pass_context
def categorize(ctx, description, amount, vendor_category, vendor_sub_category, credit):
    """Categorize a single transaction description"""

    cli_instance = ctx.obj['cli']
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {amount}", param_hint='--amount')

    result = cli_instance.categorize(
        description, value, Direction.CREDIT if credit else Direction.DEBIT,
        vendor_category=vendor_category, vendor_sub_category=vendor_sub_category,
    )
    click.echo(f"Category:   {result['category']}")
    click.echo(f"Tier:       {result['tier']} ({result['confidence']:.2f})")
    click.echo(f"Merchant:   {result['merchant_norm']}")
    if result['excluded']:
        click.echo(f"Excluded:   {result['exclusion_reason']}")


@cli.command(name='init-config')
@click.argument('output_path', default='statements_config.json')
@click.option('--format', type=click.Choice(['json', 'yaml']), default='json', help='Configuration file format')
@click.pass_context
def init_config(ctx, output_path, format):
    """Generate configuration file template"""

    cli_instance = ctx.obj['cli']

    if format == 'yaml' and not output_path.endswith(('.yml', '.yaml')):
        output_path = os.path.splitext(output_path)[0] + '.yml'

    if cli_instance.generate_config_template(output_path):
        click.echo(f"✓ Configuration template generated: {output_path}")
        click.echo("  Edit the file to customize retries, thresholds and rule tables")
    else:
        click.echo("✗ Failed to generate configuration template")
        sys.exit(1)


def main():
    """Main entry point for CLI"""
    cli()


if __name__ == '__main__':
    main()
