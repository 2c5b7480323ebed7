import os
import tempfile

os.environ.setdefault("PDF_TEMPLATES_BASE_DIR", tempfile.mkdtemp(prefix="pdf-templates-"))

import fitz  # noqa: E402
import pytest  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402

from pdf_templates.service import TemplateService  # noqa: E402
from pdf_templates.storage import LocalTemplateStorage  # noqa: E402

A4 = (595, 842)


def make_pdf(pages=1, size=A4, text_fields=(), checkboxes=(), choices=(), page_text=None):
    """Build a PDF in memory; widgets are placed on the first page."""
    doc = fitz.open()
    for _ in range(pages):
        page = doc.new_page(width=size[0], height=size[1])
        if page_text:
            page.insert_text((72, 72), page_text, fontsize=12)

    page = doc[0]
    top = 100
    for name in text_fields:
        widget = fitz.Widget()
        widget.field_name = name
        widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
        widget.rect = fitz.Rect(50, top, 350, top + 20)
        widget.field_value = ""
        page.add_widget(widget)
        top += 40

    for name in checkboxes:
        widget = fitz.Widget()
        widget.field_name = name
        widget.field_type = fitz.PDF_WIDGET_TYPE_CHECKBOX
        widget.rect = fitz.Rect(50, top, 65, top + 15)
        widget.field_value = False
        page.add_widget(widget)
        top += 40

    for name in choices:
        widget = fitz.Widget()
        widget.field_name = name
        widget.field_type = fitz.PDF_WIDGET_TYPE_COMBOBOX
        widget.rect = fitz.Rect(50, top, 200, top + 20)
        widget.choice_values = ["Monthly", "Yearly"]
        widget.field_value = "Monthly"
        page.add_widget(widget)
        top += 40

    data = doc.tobytes()
    doc.close()
    return data


def widget_values(pdf_bytes):
    values = {}
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        for page in doc:
            for widget in page.widgets() or []:
                values[widget.field_name] = widget.field_value
    return values


def page_text(pdf_bytes, page_number=0):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return doc[page_number].get_text()


def definition(**overrides):
    raw = {
        "id": "f1",
        "type": "text",
        "dataKey": "value",
        "page": 0,
        "x": 0.1,
        "y": 0.1,
        "width": 0.4,
        "height": 0.05,
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def blank_pdf():
    return make_pdf()


@pytest.fixture
def form_pdf():
    return make_pdf(pages=2, text_fields=["company_name", "vat_number"], checkboxes=["accept_terms"], choices=["billing_cycle"])


@pytest.fixture
def local_storage(tmp_path):
    return LocalTemplateStorage(tmp_path)


@pytest.fixture
def service(local_storage):
    return TemplateService(local_storage)


class FakeBody:
    def __init__(self, data):
        self._data = data
        self.closed = False

    def read(self):
        return self._data

    def close(self):
        self.closed = True


class FakePaginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, Bucket, Prefix=""):
        keys = sorted(k for (b, k) in self.client.objects if b == Bucket and k.startswith(Prefix))
        yield {"Contents": [{"Key": k} for k in keys]}


class FakeS3Client:
    """In-memory stand-in for the handful of S3 calls the storage backend makes."""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[(Bucket, Key)] = Body

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not found"}}, "GetObject")
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)


@pytest.fixture
def fake_s3():
    return FakeS3Client()
