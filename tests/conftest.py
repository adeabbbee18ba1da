"""Shared fixtures: packaged rule tables, PDF builders and a scripted model client."""

import io
import json
import time

import pytest
from pypdf import PdfReader, PdfWriter

from card_statements.parsers.base import CompletionClient, CompletionResponse
from card_statements.utils.config_manager import (
    DEFAULT_BANK_RULES, DEFAULT_MERCHANT_TABLES, ConfigManager,
)
from card_statements.utils.rule_tables import build_bank_rules, build_merchant_tables


def build_text_pdf(lines):
    """Minimal one-page PDF with the given lines in Helvetica"""
    def escape(text):
        return text.replace('\\', '\\\\').replace('(', '\\(').replace(')', '\\)')

    content = "BT /F1 11 Tf 14 TL 50 760 Td " + " ".join(f"({escape(line)}) Tj T*" for line in lines) + " ET"
    objects = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        "<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        "/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>",
        "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        f"<< /Length {len(content)} >>\nstream\n{content}\nendstream",
    ]

    out = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n{body}\nendobj\n".encode('latin-1')

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode('latin-1')
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode('latin-1')
    out += (f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
            f"startxref\n{xref_offset}\n%%EOF\n").encode('latin-1')
    return out


def encrypt_pdf(data, user_password, owner_password="owner-secret"):
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(data)))
    writer.encrypt(user_password=user_password, owner_password=owner_password)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def blank_pdf():
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


STATEMENT_LINES = [
    "RBL Bank Credit Card Statement",
    "Statement period 01/01/2024 - 31/01/2024",
    "05/01/2024 SWIGGY BANGALORE 450.00 Dr",
    "12/01/2024 INTEREST CHARGED 80.50 Dr",
    "15/01/2024 PAYMENT RECEIVED THANK YOU 8,000.00 Cr",
    "20/01/2024 AMAZON PAY INDIA 12,000.00 Dr",
]


VALID_RESPONSE = {
    "card_details": {
        "card_type": "Visa Signature",
        "masked_number": "XXXX XXXX XXXX 4400",
        "credit_limit": "2,00,000.00",
        "available_credit": 150000,
    },
    "summary": {
        "total_dues": 12530.5,
        "minimum_due": 630,
        "previous_balance": 8000,
        "payment_received": 8000,
        "purchase_amount": 12530.5,
    },
    "statement_period": {"start": "2024-01-01", "end": "2024-01-31", "due_date": "2024-02-20"},
    "transactions": [
        {"date": "2024-01-05", "description": "SWIGGY BANGALORE", "amount": 450.0,
         "type": "Dr", "category": "online_food_ordering"},
        {"date": "2024-01-12", "description": "INTEREST CHARGED", "amount": 80.5,
         "type": "Dr", "category": "unmapped", "vendor_category": "INTEREST"},
        {"date": "2024-01-15", "description": "PAYMENT RECEIVED THANK YOU", "amount": 8000,
         "type": "Cr"},
        {"date": "2024-01-20", "description": "AMAZON PAY INDIA", "amount": 12000,
         "type": "Dr", "category": "amazon_spends"},
    ],
}


class ScriptedClient(CompletionClient):
    """Returns canned responses in order, repeating the last one"""

    def __init__(self, responses, model="scripted-model", delays=None):
        self.responses = list(responses)
        self.delays = list(delays or [])
        self.prompts = []
        self._model = model

    @property
    def model_name(self):
        return self._model

    def complete(self, system_instruction, prompt, response_schema):
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.responses)) - 1
        if index < len(self.delays) and self.delays[index]:
            time.sleep(self.delays[index])
        item = self.responses[index]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            item = json.dumps(item)
        return CompletionResponse(text=item, model=self._model)

    @property
    def call_count(self):
        return len(self.prompts)


@pytest.fixture
def bank_rules():
    return build_bank_rules(ConfigManager._read_structured_file(str(DEFAULT_BANK_RULES)))


@pytest.fixture
def merchant_tables():
    return build_merchant_tables(ConfigManager._read_structured_file(str(DEFAULT_MERCHANT_TABLES)))


@pytest.fixture
def statement_pdf():
    return build_text_pdf(STATEMENT_LINES)


@pytest.fixture
def valid_response():
    return json.loads(json.dumps(VALID_RESPONSE))
