import uuid

import structlog
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from libs.py_common.db import utcnow
from libs.py_common.errors import NotFoundError, ValidationError
from libs.py_common.processor import validate_account_number

from .models import BankDetailsUpdate, Vendor

logger = structlog.get_logger(__name__)


class VendorAccounts:
    """Vendor bank details and the cached transfer recipient that belongs to them."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, vendor_id: uuid.UUID) -> Vendor:
        with self.session_factory() as session:
            vendor = session.get(Vendor, vendor_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {vendor_id} not found")
        return vendor

    def update_bank_details(self, vendor_id: uuid.UUID, details: BankDetailsUpdate) -> Vendor:
        account_number = validate_account_number(details.account_number)
        if not details.bank_code or not details.bank_code.strip():
            raise ValidationError("Bank code is required")
        if not details.account_name or not details.account_name.strip():
            raise ValidationError("Account name is required")

        with self.session_factory() as session, session.begin():
            vendor = session.get(Vendor, vendor_id)
            if vendor is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")
            vendor.bank_name = details.bank_name
            vendor.bank_code = details.bank_code.strip()
            vendor.account_number = account_number
            vendor.account_name = details.account_name.strip()
            # the processor recipient points at the old account
            vendor.recipient_code = None
            vendor.updated_at = utcnow()
        logger.info("vendor_bank_details_updated", vendor_id=str(vendor_id), bank_code=vendor.bank_code)
        return vendor

    def cache_recipient_code(self, vendor: Vendor, recipient_code: str) -> bool:
        """Stores the recipient code only if the bank details it was created from are still current."""
        with self.session_factory() as session, session.begin():
            result = session.exec(
                update(Vendor)
                .where(Vendor.id == vendor.id)
                .where(Vendor.bank_code == vendor.bank_code)
                .where(Vendor.account_number == vendor.account_number)
                .where(Vendor.account_name == vendor.account_name)
                .values(recipient_code=recipient_code, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        cached = result.rowcount == 1
        if not cached:
            logger.warning("recipient_code_not_cached", vendor_id=str(vendor.id), reason="bank_details_changed")
        return cached
