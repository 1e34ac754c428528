import logging

from fastapi import APIRouter, Depends, Response
from pymongo.database import Database

import invoice
from auth import require_backend_user
from database import get_db
from schemas import GenerateInvoicePayload, InvoiceDataPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoice", tags=["Invoices"], dependencies=[Depends(require_backend_user)])


@router.post("/data")
def get_invoice_data(payload: InvoiceDataPayload, db: Database = Depends(get_db)):
    return invoice.get_invoice_data(db, payload.booking_ids, payload.client_timezone)


@router.post("/generate")
def generate_invoice(payload: GenerateInvoicePayload):
    pdf = invoice.generate_invoice(payload.data, payload.signed, payload.currency_symbol)
    number = payload.data.get("invoice_number") or "draft"
    logger.info(f"Invoice generated: {number}")
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice_{number}.pdf"'},
    )
