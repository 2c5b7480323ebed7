from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import logging  # noqa: E402
import re  # noqa: E402
from typing import Optional  # noqa: E402
from urllib.parse import quote  # noqa: E402

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile  # noqa: E402
from fastapi.exception_handlers import request_validation_exception_handler  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel, ConfigDict, Field  # noqa: E402

from pdf_templates import (  # noqa: E402
    InvalidDocument,
    InvalidMapping,
    TemplateEngineError,
    TemplateNotFound,
    TemplateService,
)
from pdf_templates.config import Settings  # noqa: E402
from pdf_templates.mapping import mapping_to_list  # noqa: E402
from pdf_templates.models import FieldDefinition  # noqa: E402

settings = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("pdf_templates.api")

app = FastAPI(title="PDF Template Engine")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "*"
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

template_service = TemplateService.from_settings(settings)


def get_template_service() -> TemplateService:
    return template_service


class MappingSaveRequest(BaseModel):
    fields: list[FieldDefinition]


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(alias="templateId")
    data: dict


def _content_disposition(name: str) -> str:
    filename = name.strip() or "document"
    if not filename.lower().endswith(".pdf"):
        filename = f"{filename}.pdf"
    # header values go out as latin-1; the UTF-8 name travels in filename*
    fallback = re.sub(r"[^A-Za-z0-9 ._-]", "_", filename)
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _http_error(exc: TemplateEngineError) -> HTTPException:
    if isinstance(exc, TemplateNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidMapping):
        return HTTPException(
            status_code=400,
            detail={
                "error": exc.message,
                "templateId": exc.template_id,
                "fieldId": exc.definition_id,
            },
        )
    if isinstance(exc, InvalidDocument):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Template engine failure: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


@app.exception_handler(RequestValidationError)
async def mapping_validation_error(request: Request, exc: RequestValidationError):
    """Malformed mapping fields get the same 400 body as a rejected mapping."""
    template_id = request.path_params.get("template_id")
    for error in exc.errors():
        loc = tuple(error.get("loc", ()))
        if not template_id or loc[:2] != ("body", "fields") or len(loc) < 3 or not isinstance(loc[2], int):
            continue
        fields = exc.body.get("fields") if isinstance(exc.body, dict) else None
        raw = fields[loc[2]] if isinstance(fields, list) and loc[2] < len(fields) else None
        field_id = raw.get("id") if isinstance(raw, dict) else None
        location = ".".join(str(part) for part in loc[3:])
        return JSONResponse(
            status_code=400,
            content={
                "detail": {
                    "error": f"Invalid field definition '{location}': {error.get('msg')}",
                    "templateId": template_id,
                    "fieldId": field_id,
                }
            },
        )
    return await request_validation_exception_handler(request, exc)


# --- PDF template endpoints ---------------------------------------------------


@app.get("/pdf-templates")
def pdf_list_templates(service: TemplateService = Depends(get_template_service)):
    templates = service.list_templates()
    return {"templates": [t.summary() for t in templates]}


@app.post("/pdf-templates/upload")
async def pdf_upload_template(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    service: TemplateService = Depends(get_template_service),
):
    if file.size is not None and file.size > settings.max_upload_bytes:
        raise HTTPException(status_code=400, detail=f"File exceeds {settings.max_upload_mb}MB limit")
    pdf_bytes = await file.read(settings.max_upload_bytes + 1)
    if len(pdf_bytes) > settings.max_upload_bytes:
        raise HTTPException(status_code=400, detail=f"File exceeds {settings.max_upload_mb}MB limit")
    try:
        template = service.upload_template(
            pdf_bytes,
            name=name or file.filename or "template.pdf",
            description=description,
            category=type,
        )
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    return template.summary()


@app.get("/pdf-templates/{template_id}/fields")
def pdf_template_fields(template_id: str, service: TemplateService = Depends(get_template_service)):
    try:
        fields = service.list_fields(template_id)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    return {"fields": [f.to_dict() for f in fields]}


@app.post("/pdf-templates/{template_id}/mapping")
def pdf_save_mapping(
    template_id: str,
    req: MappingSaveRequest,
    service: TemplateService = Depends(get_template_service),
):
    try:
        field_count = service.save_mapping(template_id, req.fields)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "fieldCount": field_count}


@app.get("/pdf-templates/{template_id}/mapping")
def pdf_get_mapping(template_id: str, service: TemplateService = Depends(get_template_service)):
    try:
        mapping = service.get_mapping(template_id)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    return {"fields": mapping_to_list(mapping)}


@app.post("/pdf-templates/generate")
def pdf_generate(req: GenerateRequest, service: TemplateService = Depends(get_template_service)):
    try:
        template = service.get_template(req.template_id)
        pdf_bytes = service.generate(req.template_id, req.data)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc

    headers = {"Content-Disposition": _content_disposition(template.name)}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


@app.get("/pdf-templates/{template_id}/download")
def pdf_download_template(template_id: str, service: TemplateService = Depends(get_template_service)):
    try:
        pdf_bytes, name = service.download_template(template_id)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    headers = {"Content-Disposition": _content_disposition(name)}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


@app.delete("/pdf-templates/{template_id}")
def pdf_delete_template(template_id: str, service: TemplateService = Depends(get_template_service)):
    try:
        service.delete_template(template_id)
    except TemplateEngineError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}
