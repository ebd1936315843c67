import asyncio
import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from models.errors import (DocumentGenerationError, ImageProcessingError, InvalidRequestError,
                           MailDeliveryError, ServiceError, create_error_response)
from models.schemas import (GenerateExcelRequest, GenerateOfferRequest, GenerateReportRequest,
                            ImageCheckRequest, SendEmailRequest, SupportTicketRequest)
from services.email_templates import (render_excel_ready, render_offer_ready, render_report_ready,
                                      render_simple_message, render_support_ticket)
from services.image_loader import (decode_base64_image, detect_image_type, load_image_bytes,
                                   magic_bytes, normalize_image, validate_image_bytes)
from services.mailer import PDF_MEDIA_TYPE, Attachment, mailer
from services.offer_pdf import load_logo, render_offer_pdf
from services.report_pdf import load_section_images, render_report_pdf
from services.spreadsheet import XLSX_MEDIA_TYPE, build_workbook
from services.staging import remove_temporary_files, stager
from utils import epoch_millis, format_size_kb, is_valid_email, slugify_filename

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

START_TIME = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(stager.sweep_forever())
    # Relay check is informational only, startup does not wait for it
    smtp_check = asyncio.create_task(run_in_threadpool(mailer.verify))
    logger.info(f"API started, support emails go to {config.SUPPORT_EMAIL}")
    try:
        yield
    finally:
        sweeper.cancel()
        smtp_check.cancel()


app = FastAPI(
    title=config.SERVICE_TITLE,
    description="""
        Generates PDF reports, commercial offers and Excel workbooks from structured JSON
        and emails them to a recipient. Also forwards support tickets by email and checks
        images before they are embedded in documents.
    """,
    version=config.SERVICE_VERSION,
    lifespan=lifespan
)

if os.path.isdir(config.ASSETS_DIR):
    app.mount('/static', StaticFiles(directory=config.ASSETS_DIR), name='static')
else:
    logger.warning(f"Assets directory not found, /static disabled: {config.ASSETS_DIR}")


class PayloadTooLarge(HTTPException):
    def __init__(self):
        super().__init__(status_code=413, detail="Requête trop volumineuse")


def payload_too_large_response(content_length: Optional[int] = None) -> JSONResponse:
    details = {"max_bytes": config.MAX_BODY_BYTES}
    if content_length is not None:
        details["content_length"] = content_length
    error = InvalidRequestError(
        message="Requête trop volumineuse",
        error_type="payload_too_large",
        details=details
    )
    return create_error_response(error, 413)


class BodySizeLimitMiddleware:
    """
    Reject request bodies larger than MAX_BODY_BYTES.

    A declared Content-Length is checked up front; bodies without one
    (chunked uploads) are counted as they are received.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope['type'] != 'http':
            await self.app(scope, receive, send)
            return

        limit = config.MAX_BODY_BYTES
        content_length = dict(scope['headers']).get(b'content-length', b'').decode('latin-1')
        if content_length.isdigit() and int(content_length) > limit:
            await payload_too_large_response(int(content_length))(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message['type'] == 'http.request':
                received += len(message.get('body', b''))
                if received > limit:
                    raise PayloadTooLarge()
            return message

        async def tracked_send(message):
            nonlocal response_started
            if message['type'] == 'http.response.start':
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracked_send)
        except PayloadTooLarge:
            if response_started:
                raise
            await payload_too_large_response()(scope, receive, send)


app.add_middleware(BodySizeLimitMiddleware)


@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info(f"{request.method} {request.url.path}")
    return await call_next(request)


# Registered last so it wraps every response, including early rejections
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex='.*',
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=config.CORS_ALLOWED_HEADERS,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error = InvalidRequestError(
        message="Requête invalide",
        error_type="invalid_request",
        details=jsonable_encoder(exc.errors())
    )
    return create_error_response(error)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Route non trouvée", "path": request.url.path})
    if exc.status_code == 413:
        return payload_too_large_response()
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    logger.error(traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Erreur serveur", "message": str(exc)})


def require_recipients(email: Optional[str], cc: Optional[str] = None):
    if not is_valid_email(email):
        raise InvalidRequestError("Email invalide", "invalid_email")
    if cc and not is_valid_email(cc):
        raise InvalidRequestError("Adresse email CC invalide", "invalid_cc", details=f"cc = {cc}")


def processing_failed(e: Exception, context: str) -> JSONResponse:
    """Log an unexpected failure and turn it into the generic 500 envelope"""
    logger.error(f"Unexpected error during {context}: {str(e)}")
    logger.error(traceback.format_exc())
    error = DocumentGenerationError(
        message="Erreur lors du traitement",
        error_type="processing_error",
        details=str(e)
    )
    return create_error_response(error, 500)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@app.get('/')
async def service_index():
    return {
        "name": config.SERVICE_TITLE,
        "version": config.SERVICE_VERSION,
        "status": "running",
        "endpoints": {
            "health": "GET /health",
            "version": "GET /version",
            "echo": "POST /api/echo",
            "testImage": "POST /api/test-image",
            "generateAndSendPdf": "POST /api/generate-and-send",
            "generateOfferAndSend": "POST /api/generate-offer-and-send",
            "generateExcelAndSend": "POST /api/generate-excel-and-send",
            "sendEmail": "POST /api/send-email",
            "sendSupportEmail": "POST /api/support/send-email",
            "static": "GET /static/<fichier>",
        },
    }


@app.get('/health')
async def healthcheck():
    remove_temporary_files()
    return {
        "status": "OK",
        "timestamp": now_iso(),
        "uptime": int(time.monotonic() - START_TIME),
        "service": config.SERVICE_NAME,
    }


@app.get('/version')
async def get_version():
    """Get the current version of the service"""
    return {
        "version": config.SERVICE_VERSION,
        "features": {
            "report_pdf": True,
            "offer_pdf": True,
            "excel": True,
            "support_tickets": True,
            "letterheads": sorted({"france", "germany", "india", "korea", "monterrey",
                                   "tunisia", "tianjin", "kunshan"}),
        },
        "staging": {
            "ttl_seconds": stager.ttl_seconds,
            "sweep_interval_seconds": config.STAGING_SWEEP_INTERVAL_SECONDS,
        },
    }


@app.post('/api/echo')
async def echo(payload: Optional[Any] = Body(None)):
    return {"ok": True, "got": payload if payload is not None else {}}


@app.post('/api/generate-offer-and-send')
async def generate_offer_and_send(payload: Optional[GenerateOfferRequest] = Body(None)):
    """
    Render a commercial offer on the site letterhead and email it as a PDF.

    The offer subject defaults to the email subject.
    """
    try:
        payload = payload or GenerateOfferRequest()
        if not payload.email or not payload.subject or payload.offer is None:
            raise InvalidRequestError("Données manquantes", "missing_fields",
                                      details="Envoyez email, subject, offer")
        require_recipients(payload.email, payload.cc)

        offer = payload.offer
        offer.subject = offer.subject or payload.subject

        logo = await load_logo()
        pdf_bytes = await run_in_threadpool(render_offer_pdf, offer, logo)
        pdf_name = f"offre_{epoch_millis()}.pdf"

        await run_in_threadpool(
            mailer.send,
            to=payload.email,
            cc=payload.cc,
            subject=payload.subject,
            html=render_offer_ready(payload.subject),
            attachments=[Attachment(pdf_name, pdf_bytes, PDF_MEDIA_TYPE)],
        )

        return {
            "success": True,
            "message": "Offre générée et envoyée avec succès",
            "details": {
                "email": payload.email,
                "cc": payload.cc or None,
                "filename": pdf_name,
                "pdfSize": format_size_kb(len(pdf_bytes)),
            },
        }

    except ServiceError as e:
        logger.error(f"Offer generation/sending failed: {e.message} - {e.details}")
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "offer generation")


@app.post('/api/send-email')
async def send_email(payload: Optional[SendEmailRequest] = Body(None)):
    """Send a plain HTML email without attachment"""
    try:
        payload = payload or SendEmailRequest()
        if not payload.email or not payload.subject or not (payload.message or payload.message_html):
            raise InvalidRequestError("Données manquantes", "missing_fields",
                                      details="Envoyez email, subject, et (message ou messageHtml)")
        require_recipients(payload.email, payload.cc)

        html = payload.message_html or render_simple_message(payload.subject, payload.message)

        await run_in_threadpool(
            mailer.send,
            to=payload.email,
            cc=payload.cc,
            subject=payload.subject,
            html=html,
            text=payload.message or None,
        )

        return {
            "success": True,
            "message": "Email envoyé avec succès",
            "details": {
                "email": payload.email,
                "cc": payload.cc or None,
                "subject": payload.subject,
                "timestamp": now_iso(),
            },
        }

    except MailDeliveryError as e:
        logger.error(f"Plain email sending failed (SMTP): {e.details} - {e.smtp}")
        return create_error_response(e)

    except ServiceError as e:
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "plain email sending")


@app.post('/api/support/send-email')
async def send_support_email(payload: Optional[SupportTicketRequest] = Body(None)):
    """Forward a support ticket to the fixed support mailbox"""
    try:
        payload = payload or SupportTicketRequest()
        if not payload.username or not payload.comment or not payload.assistant_name:
            raise InvalidRequestError("Données manquantes", "missing_fields",
                                      details="Envoyez username, comment, assistant_name")

        await run_in_threadpool(
            mailer.send,
            to=config.SUPPORT_EMAIL,
            subject=f"🆘 Support - {payload.assistant_name} - {payload.username}",
            html=render_support_ticket(payload.username, payload.assistant_name, payload.comment),
        )
        logger.info(f"Support email sent to {config.SUPPORT_EMAIL}")

        return {
            "success": True,
            "message": "Email de notification envoyé avec succès",
            "email_sent_to": config.SUPPORT_EMAIL,
            "timestamp": now_iso(),
        }

    except ServiceError as e:
        logger.error(f"Support email failed: {e.message} - {e.details}")
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "support email sending")


@app.post('/api/generate-excel-and-send')
async def generate_excel_and_send(payload: Optional[GenerateExcelRequest] = Body(None)):
    """
    Build an .xlsx workbook from row arrays and email it.

    sheets is either [{"name": ..., "data": [[...]]}] or {"<name>": [[...]]}.
    """
    try:
        payload = payload or GenerateExcelRequest()
        if not payload.email or not payload.subject or payload.sheets is None or payload.sheets == '':
            raise InvalidRequestError("Données manquantes", "missing_fields",
                                      details="Envoyez email, subject, sheets (array ou objet)")
        require_recipients(payload.email, payload.cc)

        workbook = await run_in_threadpool(build_workbook, payload.sheets)

        if payload.filename:
            excel_filename = f"{slugify_filename(payload.filename)}.xlsx"
        else:
            excel_filename = f"rapport_{epoch_millis()}.xlsx"

        await run_in_threadpool(
            mailer.send,
            to=payload.email,
            cc=payload.cc,
            subject=payload.subject,
            html=render_excel_ready(payload.subject, excel_filename, workbook.sheet_names),
            attachments=[Attachment(excel_filename, workbook.content, XLSX_MEDIA_TYPE)],
        )

        return {
            "success": True,
            "message": "Fichier Excel généré et envoyé avec succès",
            "details": {
                "email": payload.email,
                "cc": payload.cc or None,
                "filename": excel_filename,
                "sheets": workbook.sheet_names,
                "sheetCount": workbook.sheet_count,
                "fileSize": format_size_kb(len(workbook.content)),
            },
        }

    except ServiceError as e:
        logger.error(f"Excel generation/sending failed: {e.message} - {e.details}")
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "excel generation")


@app.post('/api/generate-and-send')
async def generate_and_send(payload: Optional[GenerateReportRequest] = Body(None)):
    """
    Render a report PDF (title, introduction, numbered sections, conclusion)
    and email it.

    Section images may come from imageUrl, imagePath or a base64 image; an
    image that cannot be loaded is replaced by an error note in the PDF.
    """
    try:
        payload = payload or GenerateReportRequest()
        if not payload.email or not payload.subject or payload.report_content is None:
            raise InvalidRequestError("Données manquantes", "missing_fields",
                                      details="Envoyez email, subject, reportContent")
        require_recipients(payload.email)

        content = payload.report_content
        if not content.is_complete:
            raise InvalidRequestError("Structure du rapport invalide", "invalid_report_structure")

        images = await load_section_images(content.sections)
        pdf_bytes = await run_in_threadpool(render_report_pdf, content, images)
        pdf_name = f"rapport_{slugify_filename(content.title).lower()}_{epoch_millis()}.pdf"

        await run_in_threadpool(
            mailer.send,
            to=payload.email,
            subject=f"Rapport : {content.title}",
            html=render_report_ready(payload.subject, content.title),
            attachments=[Attachment(pdf_name, pdf_bytes, PDF_MEDIA_TYPE)],
        )

        return {
            "success": True,
            "message": "Rapport généré et envoyé avec succès",
            "details": {
                "email": payload.email,
                "filename": pdf_name,
                "pdfSize": format_size_kb(len(pdf_bytes)),
            },
        }

    except ServiceError as e:
        logger.error(f"Report generation/sending failed: {e.message} - {e.details}")
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "report generation")


@app.post('/api/test-image')
async def test_image(payload: Optional[ImageCheckRequest] = Body(None)):
    """Report what the service makes of an image before it is used in a document"""
    try:
        payload = payload or ImageCheckRequest()
        if payload.image_url:
            buffer = await load_image_bytes(image_url=payload.image_url)
        elif payload.image_data:
            buffer = decode_base64_image(payload.image_data)
        else:
            raise InvalidRequestError("Fournir imageUrl ou imageData", "missing_image_source")

        validate_image_bytes(buffer)

        try:
            normalized = await run_in_threadpool(normalize_image, buffer, 'png')
            normalized_ok = len(normalized) > 10
        except ImageProcessingError as e:
            logger.info(f"Image cannot be normalised: {e.message}")
            normalized_ok = False

        return {
            "success": True,
            "imageType": detect_image_type(buffer) or "inconnu",
            "size": format_size_kb(len(buffer)),
            "sizeBytes": len(buffer),
            "magicBytes": magic_bytes(buffer),
            "normalizedPreviewPossible": normalized_ok,
        }

    except ServiceError as e:
        return create_error_response(e)

    except Exception as e:
        return processing_failed(e, "image check")


if __name__ == '__main__':
    uvicorn.run('main:app', host='0.0.0.0', port=config.PORT)
