"""FastAPI application for OpenEvents."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any
from urllib.parse import urlencode
import tomllib

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .crud import (
    apply_event_changes,
    delete_event,
    get_event,
    get_venue,
    resolve_duplicate_target,
    resolve_venue,
    update_venue,
    venue_ref,
)
from .database import SessionLocal
from .duplicates import DuplicateCycleError, progenitor_of
from .forms import EventForm
from .models import Event
from .queries import UI_ORDERINGS, EventListing, EventSearch, upcoming_at_venue
from .renderers import (
    EVENT_KINDS,
    LISTING_KINDS,
    InvalidCallbackError,
    OutputKind,
    UnsupportedFormatError,
    UrlFor,
    render_event,
    render_events,
    render_page,
    serialize_event,
)
from .spam import spam_failures
from .storage import init_db
from .utils import nested_params

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

FLASH_PARAMS = {"message", "message_class"}
SAVED_MESSAGE = "Event was successfully saved."
NEW_VENUE_MESSAGE = "Please tell us more about where it's being held."
CLONE_MESSAGE = (
    "This is a new event cloned from an existing one. "
    "Please update the fields, like the time and description."
)


def _no_cache(response: Response) -> Response:
    """Prevent clients from caching dynamic pages so fresh data is shown."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("openevents")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title=settings.site_title, version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def form_params(request: Request) -> dict:
    """Nested params from a submitted form (``event[title]`` and friends)."""
    form = await request.form()
    return nested_params(form.multi_items())


def _query_params(request: Request) -> dict:
    return nested_params(request.query_params.multi_items())


def _scalar(params: dict, name: str) -> str | None:
    value = params.get(name)
    return value if isinstance(value, str) else None


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


def _redirect(path: str, message: str | None = None, message_class: str = "success"):
    """Redirect to ``path`` carrying a message for the next page to show."""
    if message:
        separator = "&" if "?" in path else "?"
        query = urlencode({"message": message, "message_class": message_class})
        path = f"{path}{separator}{query}"
    return RedirectResponse(url=path, status_code=303)


def _flash(request: Request) -> dict[str, str | None]:
    return {
        "message": request.query_params.get("message"),
        "message_class": request.query_params.get("message_class"),
    }


def _event_url_for(request: Request) -> UrlFor:
    def url_for(event: Event) -> str:
        return str(request.url_for("show_event", event_id=str(event.id)))

    return url_for


def _render_error(request: Request, status_code: int, message: str | None):
    return render_page(
        request,
        "error.html",
        {
            "status_code": status_code,
            "error_message": message or "Something went wrong.",
        },
        status_code=status_code,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


@app.exception_handler(UnsupportedFormatError)
async def unsupported_format_handler(request: Request, exc: UnsupportedFormatError):
    detail = f"Can't provide this resource as {exc.requested}."
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=406)
    return _render_error(request, 406, detail)


@app.exception_handler(InvalidCallbackError)
async def invalid_callback_handler(request: Request, exc: InvalidCallbackError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(DuplicateCycleError)
async def duplicate_cycle_handler(request: Request, exc: DuplicateCycleError):
    logger.error(
        "Duplicate chain is broken while handling %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    detail = "This record's duplicate history is inconsistent. Please report it."
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=500)
    return _render_error(request, 500, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


def _listing_response(
    request: Request,
    db: Session,
    *,
    params: dict,
    kind: OutputKind,
    page: int,
    page_title: str = "Events",
):
    listing = EventListing.from_params(params)
    url_for = _event_url_for(request)
    pagination = None
    if kind is OutputKind.HTML:
        events, pagination = listing.paginate(
            db, page=page, per_page=settings.events_per_page
        )
    else:
        events = listing.all(db)
    filters = {
        name: value
        for name, value in request.query_params.multi_items()
        if name not in FLASH_PARAMS | {"page"}
    }
    export_query = f"?{urlencode(filters)}" if filters else ""
    response = render_events(
        kind,
        events,
        request=request,
        url_for=url_for,
        template_name="events/index.html",
        context={
            "events": events,
            "pagination": pagination,
            "pagination_query": urlencode(filters),
            "export_path": "/events",
            "export_query": export_query,
            "feed_path": f"/events.atom{export_query}",
            "page_title": page_title,
            "start_date": listing.date_range.start,
            "end_date": listing.date_range.end,
            "order": listing.order or "date",
            "orderings": UI_ORDERINGS,
            "failures": listing.warnings,
            "perform_caching": listing.perform_caching,
            **_flash(request),
        },
        callback=_scalar(params, "callback"),
    )
    if not listing.perform_caching:
        _no_cache(response)
    return response


@app.get("/")
def homepage(request: Request, db: Session = Depends(get_db)):
    return _listing_response(
        request,
        db,
        params={},
        kind=OutputKind.HTML,
        page=1,
        page_title="Upcoming Events",
    )


@app.get("/events.{fmt}")
@app.get("/events")
def list_events(
    request: Request,
    fmt: str | None = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    kind = OutputKind.negotiate(
        fmt, request.headers.get("accept"), allowed=LISTING_KINDS
    )
    return _listing_response(
        request, db, params=_query_params(request), kind=kind, page=page
    )


@app.get("/events/search.{fmt}")
@app.get("/events/search")
def search_events(
    request: Request,
    fmt: str | None = None,
    db: Session = Depends(get_db),
):
    kind = OutputKind.negotiate(
        fmt, request.headers.get("accept"), allowed=LISTING_KINDS
    )
    params = _query_params(request)
    search = EventSearch.from_params(params)
    if search.hard_failure:
        return _redirect("/", search.failure_message, "failure")

    grouped = None
    if kind is OutputKind.HTML:
        grouped = search.grouped(db)
        events = grouped["current"] + grouped["past"]
    else:
        events = search.events(db)
    search_query = urlencode(
        {
            name: value
            for name, value in request.query_params.multi_items()
            if name not in FLASH_PARAMS
        }
    )
    return render_events(
        kind,
        events,
        request=request,
        url_for=_event_url_for(request),
        template_name="events/search.html",
        context={
            "page_title": search.title,
            "grouped": grouped,
            "query": search.query,
            "search_query": search_query,
            "failures": search.failures,
        },
        callback=_scalar(params, "callback"),
    )


@app.get("/events/new")
def new_event(request: Request):
    form = EventForm.from_params(_query_params(request))
    return render_page(
        request,
        "events/form.html",
        {
            "form": form,
            "form_action": "/events",
            "page_title": "Add an Event",
            "errors": {},
            **_flash(request),
        },
    )


def _save_event(
    request: Request, db: Session, params: dict, event: Event | None
):
    """Validate a submission and either persist it or re-render the form."""
    form = EventForm.from_params(params)
    changes, errors = form.parse()
    failures = spam_failures(form.description, _scalar(params, "trap_field"))
    if failures:
        logger.warning(
            "Blocked event submission %r from %s: %s",
            form.title,
            request.client.host if request.client else "unknown",
            "; ".join(failures),
        )

    venue = None
    try:
        venue = resolve_venue(db, venue_ref(params))
    except ValueError:
        errors["venue"] = "Venue must be picked from the list or entered by name."
    except LookupError as exc:
        errors["venue"] = f"{exc}."
    duplicate_of = None
    if changes is not None:
        try:
            duplicate_of = resolve_duplicate_target(db, event, changes.duplicate_of_id)
        except (LookupError, ValueError) as exc:
            errors["duplicate_of"] = f"{exc}."
    has_new_venue = venue is not None and venue.id is None
    preview = "preview" in params

    if failures or errors or preview or changes is None:
        if _wants_json(request) and not preview:
            return JSONResponse(
                {"errors": errors, "failures": failures}, status_code=422
            )
        is_new = event is None
        status_code = 200 if preview and not (errors or failures) else 400
        return render_page(
            request,
            "events/form.html",
            {
                "form": form,
                "form_action": "/events" if is_new else f"/events/{event.id}",
                "page_title": "Add an Event" if is_new else f"Editing '{event.title}'",
                "errors": errors,
                "failures": failures,
                "preview": changes if preview else None,
            },
            status_code=status_code,
        )

    created = event is None
    event = apply_event_changes(
        db, event or Event(), changes, venue=venue, duplicate_of=duplicate_of
    )
    logger.info("%s event %s", "Created" if created else "Updated", event.id)
    if _wants_json(request):
        return JSONResponse(
            {"event": serialize_event(event, url_for=_event_url_for(request))},
            status_code=201 if created else 200,
        )
    if has_new_venue:
        return _redirect(
            f"/venues/{event.venue.id}/edit?from_event={event.id}",
            f"{SAVED_MESSAGE} {NEW_VENUE_MESSAGE}",
        )
    return _redirect(f"/events/{event.id}", SAVED_MESSAGE)


@app.post("/events")
def create_event_view(
    request: Request,
    params: dict = Depends(form_params),
    db: Session = Depends(get_db),
):
    return _save_event(request, db, params, None)


def _missing_event(event_id: str):
    return _redirect(
        "/events", f"Couldn't find event with id {event_id!r}.", "failure"
    )


@app.get("/events/{event_id}")
@app.get("/events/{event_id}.{fmt}")
def show_event(
    event_id: str,
    request: Request,
    fmt: str | None = None,
    db: Session = Depends(get_db),
):
    kind = OutputKind.negotiate(fmt, request.headers.get("accept"), allowed=EVENT_KINDS)
    event = get_event(db, event_id)
    if event is None:
        return _missing_event(event_id)
    if event.is_duplicate:
        progenitor = progenitor_of(event)
        logger.info(
            "Redirecting duplicate event %s to %s", event.id, progenitor.id
        )
        suffix = f".{fmt}" if fmt else ""
        return RedirectResponse(url=f"/events/{progenitor.id}{suffix}", status_code=303)
    params = _query_params(request)
    return render_event(
        kind,
        event,
        request=request,
        url_for=_event_url_for(request),
        template_name="events/show.html",
        context={"event": event, "page_title": event.title, **_flash(request)},
        callback=_scalar(params, "callback"),
    )


@app.get("/events/{event_id}/edit")
def edit_event(event_id: str, request: Request, db: Session = Depends(get_db)):
    event = get_event(db, event_id)
    if event is None:
        return _missing_event(event_id)
    return render_page(
        request,
        "events/form.html",
        {
            "form": EventForm.from_event(event),
            "form_action": f"/events/{event.id}",
            "page_title": f"Editing '{event.title}'",
            "errors": {},
            **_flash(request),
        },
    )


@app.get("/events/{event_id}/clone")
def clone_event(event_id: str, request: Request, db: Session = Depends(get_db)):
    event = get_event(db, event_id)
    if event is None:
        return _missing_event(event_id)
    return render_page(
        request,
        "events/form.html",
        {
            "form": EventForm.from_event(progenitor_of(event), include_times=False),
            "form_action": "/events",
            "page_title": "Clone an existing Event",
            "errors": {},
            "message": CLONE_MESSAGE,
            "message_class": "success",
        },
    )


@app.post("/events/{event_id}")
def update_event_view(
    event_id: str,
    request: Request,
    params: dict = Depends(form_params),
    db: Session = Depends(get_db),
):
    event = get_event(db, event_id)
    if event is None:
        return _missing_event(event_id)
    return _save_event(request, db, params, event)


@app.post("/events/{event_id}/delete")
def delete_event_view(event_id: str, db: Session = Depends(get_db)):
    event = get_event(db, event_id)
    if event is None:
        return _missing_event(event_id)
    title = event.title
    delete_event(db, event)
    logger.info("Deleted event %s", event_id)
    return _redirect("/events", f'"{title}" has been deleted')


@app.delete("/events/{event_id}", status_code=204)
def api_delete_event(event_id: str, db: Session = Depends(get_db)):
    event = get_event(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    delete_event(db, event)
    logger.info("Deleted event %s", event_id)
    return Response(status_code=204)


def _missing_venue(venue_id: str):
    return _redirect(
        "/events", f"Couldn't find venue with id {venue_id!r}.", "failure"
    )


@app.get("/venues/{venue_id}")
def show_venue(venue_id: str, request: Request, db: Session = Depends(get_db)):
    venue = get_venue(db, venue_id)
    if venue is None:
        return _missing_venue(venue_id)
    if venue.is_duplicate:
        return RedirectResponse(
            url=f"/venues/{progenitor_of(venue).id}", status_code=303
        )
    return render_page(
        request,
        "venues/show.html",
        {
            "venue": venue,
            "events": upcoming_at_venue(db, venue),
            "page_title": venue.title,
            **_flash(request),
        },
    )


def _venue_form(venue) -> dict[str, Any]:
    return {
        "title": venue.title or "",
        "address": venue.address or "",
        "url": venue.url or "",
        "description": venue.description or "",
        "latitude": "" if venue.latitude is None else venue.latitude,
        "longitude": "" if venue.longitude is None else venue.longitude,
    }


@app.get("/venues/{venue_id}/edit")
def edit_venue(
    venue_id: str,
    request: Request,
    from_event: str | None = Query(None),
    db: Session = Depends(get_db),
):
    venue = get_venue(db, venue_id)
    if venue is None:
        return _missing_venue(venue_id)
    return render_page(
        request,
        "venues/edit.html",
        {
            "venue": venue,
            "form": _venue_form(venue),
            "from_event": from_event,
            "page_title": f"Editing '{venue.title}'",
            "errors": {},
            **_flash(request),
        },
    )


def _parse_coordinate(raw: str | None, name: str, errors: dict[str, str]):
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        errors[name] = f"{name.capitalize()} must be a number."
        return None


@app.post("/venues/{venue_id}")
def save_venue(
    venue_id: str,
    request: Request,
    title: str = Form(""),
    address: str | None = Form(None),
    url: str | None = Form(None),
    description: str | None = Form(None),
    latitude: str | None = Form(None),
    longitude: str | None = Form(None),
    from_event: str | None = Form(None),
    db: Session = Depends(get_db),
):
    venue = get_venue(db, venue_id)
    if venue is None:
        return _missing_venue(venue_id)
    errors: dict[str, str] = {}
    if not title.strip():
        errors["title"] = "Title can't be blank."
    parsed_latitude = _parse_coordinate(latitude, "latitude", errors)
    parsed_longitude = _parse_coordinate(longitude, "longitude", errors)
    if errors:
        return render_page(
            request,
            "venues/edit.html",
            {
                "venue": venue,
                "form": {
                    "title": title,
                    "address": address or "",
                    "url": url or "",
                    "description": description or "",
                    "latitude": latitude or "",
                    "longitude": longitude or "",
                },
                "from_event": from_event,
                "page_title": f"Editing '{venue.title}'",
                "errors": errors,
            },
            status_code=400,
        )
    update_venue(
        db,
        venue,
        title=title.strip(),
        address=(address or "").strip() or None,
        url=(url or "").strip() or None,
        description=(description or "").strip() or None,
        latitude=parsed_latitude,
        longitude=parsed_longitude,
    )
    logger.info("Updated venue %s", venue.id)
    event = get_event(db, from_event) if from_event else None
    if event is not None:
        return _redirect(f"/events/{event.id}", "Venue was successfully updated.")
    return _redirect(f"/venues/{venue.id}", "Venue was successfully updated.")
