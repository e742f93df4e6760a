"""
API routes for the Lending Server.

Thin request/response mapping over the stores and LendingService. Field
level validation happens here, in the pydantic request models; every
business outcome comes from the core and is rendered by the exception
handlers in app.py.

Handlers are plain functions, so FastAPI runs each request on a worker
thread and the core stays synchronous.
"""

import logging
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, Field, field_validator

from ..lending import LendingService
from ..store import CatalogStore, IdentityStore

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# --- Request/Response Models ---


class _NotBlankModel(BaseModel):
    """Rejects strings made only of whitespace."""

    @field_validator("*", mode="before")
    @classmethod
    def not_blank(cls, value):
        if isinstance(value, str) and not value.strip():
            raise ValueError("must not be blank")
        return value


class AuthorRequest(_NotBlankModel):
    """Create or replace an author."""

    name: str = Field(..., min_length=1, description="Author name")
    date_of_birth: date = Field(..., description="Date of birth, must be in the past")

    @field_validator("date_of_birth")
    @classmethod
    def in_the_past(cls, value: date) -> date:
        if value >= date.today():
            raise ValueError("Date of birth must be in the past")
        return value


class AuthorResponse(BaseModel):
    id: int
    name: str
    date_of_birth: date


class MemberRequest(_NotBlankModel):
    """Create or replace a member."""

    username: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN, description="Email address")
    address: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)


class MemberResponse(BaseModel):
    id: int
    username: str
    email: str
    address: str
    phone_number: str


class BookRequest(_NotBlankModel):
    """Create a book."""

    title: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, description="Positive price")
    author_id: int = Field(..., description="Owning author ID")


class BookUpdateRequest(BookRequest):
    """Replace a book; version is the one last read."""

    version: int = Field(..., ge=0, description="Version last read by the client")


class BookResponse(BaseModel):
    id: int
    title: str
    genre: str
    price: Decimal
    author_id: int
    version: int


class AvailabilityResponse(BaseModel):
    book_id: int
    available: bool


class LoanRequest(BaseModel):
    """Lend a book to a member."""

    member_id: int = Field(..., description="Borrowing member ID")
    book_id: int = Field(..., description="Book ID")


class LoanResponse(BaseModel):
    id: int
    member_id: int
    book_id: int
    lend_date: date
    return_date: date | None = None


# --- Dependencies ---


def get_identity_store(request: Request) -> IdentityStore:
    """Get identity store from app state."""
    return request.app.state.identity_store


def get_catalog_store(request: Request) -> CatalogStore:
    """Get catalog store from app state."""
    return request.app.state.catalog_store


def get_lending_service(request: Request) -> LendingService:
    """Get lending service from app state."""
    return request.app.state.lending_service


# --- Author Routes ---


@router.post("/authors", response_model=AuthorResponse, tags=["Authors"])
def create_author(body: AuthorRequest, identity: IdentityStore = Depends(get_identity_store)):
    """Create a new author."""
    return identity.create_author(body.name, body.date_of_birth)


@router.get("/authors", response_model=list[AuthorResponse], tags=["Authors"])
def list_authors(identity: IdentityStore = Depends(get_identity_store)):
    return identity.list_authors()


@router.get("/authors/{author_id}", response_model=AuthorResponse, tags=["Authors"])
def get_author(author_id: int, identity: IdentityStore = Depends(get_identity_store)):
    return identity.get_author(author_id)


@router.put("/authors/{author_id}", response_model=AuthorResponse, tags=["Authors"])
def update_author(
    author_id: int,
    body: AuthorRequest,
    identity: IdentityStore = Depends(get_identity_store),
):
    return identity.update_author(author_id, body.name, body.date_of_birth)


@router.delete("/authors/{author_id}", status_code=204, tags=["Authors"])
def delete_author(author_id: int, identity: IdentityStore = Depends(get_identity_store)):
    """Delete an author that has no books."""
    identity.delete_author(author_id)
    return Response(status_code=204)


# --- Member Routes ---


@router.post("/members", response_model=MemberResponse, tags=["Members"])
def create_member(body: MemberRequest, identity: IdentityStore = Depends(get_identity_store)):
    """Create a member with a unique username and email."""
    return identity.create_member(body.username, body.email, body.address, body.phone_number)


@router.get("/members", response_model=list[MemberResponse], tags=["Members"])
def list_members(identity: IdentityStore = Depends(get_identity_store)):
    return identity.list_members()


@router.get("/members/{member_id}", response_model=MemberResponse, tags=["Members"])
def get_member(member_id: int, identity: IdentityStore = Depends(get_identity_store)):
    return identity.get_member(member_id)


@router.put("/members/{member_id}", response_model=MemberResponse, tags=["Members"])
def update_member(
    member_id: int,
    body: MemberRequest,
    identity: IdentityStore = Depends(get_identity_store),
):
    return identity.update_member(
        member_id, body.username, body.email, body.address, body.phone_number
    )


@router.delete("/members/{member_id}", status_code=204, tags=["Members"])
def delete_member(member_id: int, identity: IdentityStore = Depends(get_identity_store)):
    identity.delete_member(member_id)
    return Response(status_code=204)


@router.get("/members/{member_id}/loans", response_model=list[LoanResponse], tags=["Members"])
def list_member_active_loans(
    member_id: int,
    lending: LendingService = Depends(get_lending_service),
):
    """List the member's active (unreturned) loans."""
    return lending.list_active_loans(member_id)


# --- Book Routes ---


@router.post("/books", response_model=BookResponse, tags=["Books"])
def create_book(body: BookRequest, catalog: CatalogStore = Depends(get_catalog_store)):
    """
    Create a new book.

    The (title, author) pair must be unique; a duplicate answers 409.
    """
    return catalog.create_book(body.title, body.genre, body.price, body.author_id)


@router.get("/books", response_model=list[BookResponse], tags=["Books"])
def list_books(catalog: CatalogStore = Depends(get_catalog_store)):
    return catalog.list_books()


@router.get("/books/{book_id}", response_model=BookResponse, tags=["Books"])
def get_book(book_id: int, catalog: CatalogStore = Depends(get_catalog_store)):
    return catalog.get_book(book_id)


@router.put("/books/{book_id}", response_model=BookResponse, tags=["Books"])
def update_book(
    book_id: int,
    body: BookUpdateRequest,
    catalog: CatalogStore = Depends(get_catalog_store),
):
    """
    Replace a book.

    The body carries the version the client last read. If another update
    landed first the request answers 409 and the client should re-read.
    """
    return catalog.update_book(
        book_id,
        body.title,
        body.genre,
        body.price,
        body.author_id,
        expected_version=body.version,
    )


@router.delete("/books/{book_id}", status_code=204, tags=["Books"])
def delete_book(book_id: int, catalog: CatalogStore = Depends(get_catalog_store)):
    catalog.delete_book(book_id)
    return Response(status_code=204)


@router.get("/books/{book_id}/availability", response_model=AvailabilityResponse, tags=["Books"])
def get_book_availability(book_id: int, lending: LendingService = Depends(get_lending_service)):
    return AvailabilityResponse(book_id=book_id, available=lending.is_book_available(book_id))


# --- Loan Routes ---


@router.post("/loans", response_model=LoanResponse, tags=["Loans"])
def create_loan(body: LoanRequest, lending: LendingService = Depends(get_lending_service)):
    """
    Lend a book to a member.

    Fails with 404 if the member or book is unknown, and with 400 if the
    book is already loaned or the member holds the maximum number of loans.
    """
    return lending.create_loan(body.member_id, body.book_id)


@router.get("/loans", response_model=list[LoanResponse], tags=["Loans"])
def list_loans(
    limit: int | None = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    lending: LendingService = Depends(get_lending_service),
):
    return lending.list_loans(limit=limit, offset=offset)


@router.get("/loans/{loan_id}", response_model=LoanResponse, tags=["Loans"])
def get_loan(loan_id: int, lending: LendingService = Depends(get_lending_service)):
    return lending.get_loan(loan_id)


@router.put("/loans/{loan_id}/return", response_model=LoanResponse, tags=["Loans"])
def return_loan(loan_id: int, lending: LendingService = Depends(get_lending_service)):
    """Return a loaned book; a second return answers 400."""
    return lending.return_loan(loan_id)
