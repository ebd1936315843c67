"""
Pydantic models for the document mailer API.

Fields the upstream agent may omit are optional here; presence checks that
need the service's own error messages are done by the route handlers.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')


class ImageReference(ApiModel):
    """Where to get an image from: URL, local path or base64 payload."""
    image_url: Optional[str] = Field(None, alias='imageUrl', description="HTTP(S) URL of the image")
    image_path: Optional[str] = Field(None, alias='imagePath', description="Path on the server's filesystem")
    image: Optional[str] = Field(None, description="Base64 payload, optionally a data URL")

    @property
    def has_source(self) -> bool:
        return bool(self.image_url or self.image_path or self.image)


class ReportSection(ImageReference):
    title: Optional[str] = Field(None, description="Section heading")
    content: Optional[str] = Field(None, description="Section body text")
    image_caption: Optional[str] = Field(None, alias='imageCaption', description="Caption under the image")


class ReportContent(ApiModel):
    title: Optional[str] = None
    introduction: Optional[str] = None
    sections: Optional[List[ReportSection]] = None
    conclusion: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.title and self.introduction
                    and self.sections is not None and self.conclusion)


class GenerateReportRequest(ApiModel):
    email: Optional[str] = None
    subject: Optional[str] = None
    report_content: Optional[ReportContent] = Field(None, alias='reportContent')


class OfferSection(ApiModel):
    title: Optional[str] = None
    content: Optional[str] = None


class Offer(ApiModel):
    company: Optional[str] = Field(None, description="Letterhead selector, e.g. 'germany'")
    site: Optional[str] = None
    entity: Optional[str] = None
    title: Optional[str] = None
    date: Optional[str] = None
    customer_lines: List[str] = Field(default_factory=list, alias='customerLines')
    customer_name: Optional[str] = Field(None, alias='customerName')
    customer_address: Optional[str] = Field(None, alias='customerAddress')
    to_person: Optional[str] = Field(None, alias='toPerson')
    subject: Optional[str] = None
    intro: Optional[str] = None
    sections: List[OfferSection] = Field(default_factory=list)
    closing: Optional[str] = None
    signature_name: Optional[str] = Field(None, alias='signatureName')
    signature_title: Optional[str] = Field(None, alias='signatureTitle')
    appendix_image_base64: Optional[str] = Field(None, alias='appendixImageBase64')
    appendix_image_title: Optional[str] = Field(None, alias='appendixImageTitle')
    appendix_image_caption: Optional[str] = Field(None, alias='appendixImageCaption')

    @property
    def letterhead_key(self) -> str:
        for value in (self.company, self.site, self.entity):
            key = str(value or '').strip().lower()
            if key:
                return key
        return 'france'

    @property
    def has_customer(self) -> bool:
        return bool(self.customer_lines or self.customer_name
                    or self.customer_address or self.to_person)


class GenerateOfferRequest(ApiModel):
    email: Optional[str] = None
    subject: Optional[str] = None
    cc: Optional[str] = None
    offer: Optional[Offer] = None


class GenerateExcelRequest(ApiModel):
    email: Optional[str] = None
    subject: Optional[str] = None
    cc: Optional[str] = None
    filename: Optional[str] = None
    # Either [{"name": ..., "data": [[...]]}] or {"<name>": [[...]]}
    sheets: Any = None


class SendEmailRequest(ApiModel):
    email: Optional[str] = None
    subject: Optional[str] = None
    cc: Optional[str] = None
    message: Optional[str] = None
    message_html: Optional[str] = Field(None, alias='messageHtml')


class SupportTicketRequest(ApiModel):
    username: Optional[str] = None
    comment: Optional[str] = None
    assistant_name: Optional[str] = None


class ImageCheckRequest(ApiModel):
    image_url: Optional[str] = Field(None, alias='imageUrl')
    image_data: Optional[str] = Field(None, alias='imageData')
