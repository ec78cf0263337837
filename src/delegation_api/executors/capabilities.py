"""External capabilities invoked by executors.

Each capability is a small protocol with a real or simulated implementation.
Executors are handed one at construction time and never branch on config.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol
from uuid import uuid4

from delegation_api.email_client import ResendEmailClient


class EmailSender(Protocol):
    service: str

    def send(self, *, recipients: list[str], subject: str, body: str) -> dict[str, Any]: ...


class CatalogSearch(Protocol):
    service: str

    def search(self, *, query: str, budget: float) -> dict[str, Any]: ...


class BookingSearch(Protocol):
    service: str

    def search(
        self, *, genre: str, preferred_time: str, location: str, tickets: int
    ) -> dict[str, Any]: ...


class SimulatedEmailSender:
    """Prepares the email without delivering it."""

    service = "email_simulation"

    def send(self, *, recipients: list[str], subject: str, body: str) -> dict[str, Any]:
        return {
            "action": "email_prepared",
            "recipients": list(recipients),
            "subject": subject,
            "message": body,
            "real": False,
            "note": "Email prepared; configure an email API key to deliver it.",
        }


class ResendEmailSender:
    """Delivers the email through the Resend API."""

    service = "resend_api"

    def __init__(self, client: ResendEmailClient) -> None:
        self.client = client

    def send(self, *, recipients: list[str], subject: str, body: str) -> dict[str, Any]:
        reply = self.client.send(to=recipients, subject=subject, html=f"<p>{body}</p>")
        return {
            "action": "email_sent",
            "recipients": list(recipients),
            "subject": subject,
            "message": body,
            "message_id": reply.get("id") or f"email-{uuid4()}",
            "real": True,
        }


@dataclass(frozen=True)
class CatalogItem:
    name: str
    price: float
    rating: str
    url: str
    reviews: int
    tags: tuple[str, ...] = field(default_factory=tuple)
    prime: bool = True


DEFAULT_CATALOG: tuple[CatalogItem, ...] = (
    CatalogItem(
        name="Logitech MX Master 3S Wireless Mouse",
        price=89.99,
        rating="4.6/5",
        url="https://shop.example.com/logitech-mx-master-3s",
        reviews=2847,
        tags=("mouse", "wireless", "bluetooth", "usb-c"),
    ),
    CatalogItem(
        name="Razer DeathAdder V3 Gaming Mouse",
        price=69.99,
        rating="4.4/5",
        url="https://shop.example.com/razer-deathadder-v3",
        reviews=1523,
        tags=("mouse", "gaming", "rgb", "ergonomic"),
    ),
    CatalogItem(
        name="Keychron K2 Mechanical Keyboard",
        price=79.0,
        rating="4.5/5",
        url="https://shop.example.com/keychron-k2",
        reviews=3110,
        tags=("keyboard", "mechanical", "wireless", "bluetooth"),
    ),
    CatalogItem(
        name="Sony WH-1000XM5 Headphones",
        price=348.0,
        rating="4.7/5",
        url="https://shop.example.com/sony-wh-1000xm5",
        reviews=5402,
        tags=("headphones", "wireless", "noise cancelling", "bluetooth"),
    ),
    CatalogItem(
        name="Lenovo IdeaPad Slim 3 Laptop",
        price=549.0,
        rating="4.3/5",
        url="https://shop.example.com/lenovo-ideapad-slim-3",
        reviews=987,
        tags=("laptop", "notebook", "computer"),
    ),
    CatalogItem(
        name="Anker 737 Power Bank",
        price=99.99,
        rating="4.6/5",
        url="https://shop.example.com/anker-737",
        reviews=4120,
        tags=("charger", "power bank", "usb-c", "battery"),
    ),
)


class SimulatedCatalogSearch:
    """Keyword search over a fixed catalog."""

    service = "catalog_simulation"

    def __init__(self, catalog: tuple[CatalogItem, ...] = DEFAULT_CATALOG) -> None:
        self.catalog = catalog

    def search(self, *, query: str, budget: float) -> dict[str, Any]:
        terms = [term for term in query.lower().split() if len(term) > 2]
        scored: list[tuple[int, CatalogItem]] = []
        for item in self.catalog:
            haystack = " ".join((item.name.lower(), *item.tags))
            score = sum(1 for term in terms if term in haystack)
            if score and item.price <= budget:
                scored.append((score, item))
        scored.sort(key=lambda pair: (-pair[0], -float(pair[1].rating.split("/")[0])))
        products = [_product_payload(item) for _, item in scored[:3]]
        return {
            "action": "product_search_simulated",
            "search_query": f"{query} under ${budget:.0f}",
            "found_products": products,
            "recommendation": (
                f"{products[0]['name']} - best match within budget" if products else None
            ),
            "total_results": len(scored),
            "budget": budget,
            "real": False,
        }


@dataclass(frozen=True)
class Showing:
    title: str
    theater: str
    showtime: str
    time_of_day: str
    price: float
    rating: str
    duration_minutes: int
    available_seats: int
    seat_row: str
    genres: tuple[str, ...] = field(default_factory=tuple)


DEFAULT_SHOWINGS: tuple[Showing, ...] = (
    Showing(
        title="Guardians of the Galaxy Vol. 3",
        theater="AMC Downtown 12",
        showtime="7:30 PM",
        time_of_day="evening",
        price=12.5,
        rating="PG-13",
        duration_minutes=150,
        available_seats=45,
        seat_row="H",
        genres=("marvel", "action", "sci-fi", "comedy"),
    ),
    Showing(
        title="Spider-Man: Across the Spider-Verse",
        theater="Regal Cinemas",
        showtime="8:00 PM",
        time_of_day="evening",
        price=11.0,
        rating="PG",
        duration_minutes=140,
        available_seats=32,
        seat_row="F",
        genres=("marvel", "animated", "action"),
    ),
    Showing(
        title="Inside Out 2",
        theater="Cinemark Riverside",
        showtime="2:15 PM",
        time_of_day="afternoon",
        price=9.5,
        rating="PG",
        duration_minutes=96,
        available_seats=60,
        seat_row="D",
        genres=("animated", "comedy"),
    ),
    Showing(
        title="A Quiet Place: Day One",
        theater="AMC Downtown 12",
        showtime="10:00 PM",
        time_of_day="night",
        price=12.5,
        rating="PG-13",
        duration_minutes=99,
        available_seats=18,
        seat_row="J",
        genres=("horror", "thriller", "sci-fi"),
    ),
)


class SimulatedBookingSearch:
    """Showtime search with seat selection over a fixed schedule."""

    service = "booking_simulation"

    def __init__(self, showings: tuple[Showing, ...] = DEFAULT_SHOWINGS) -> None:
        self.showings = showings

    def search(
        self, *, genre: str, preferred_time: str, location: str, tickets: int
    ) -> dict[str, Any]:
        booking_date = (datetime.now(UTC) + timedelta(days=1)).date().isoformat()
        genre_key = genre.lower()
        time_key = preferred_time.lower()

        candidates = [
            showing
            for showing in self.showings
            if (genre_key in ("any", "latest", "general") or genre_key in showing.genres)
            and (time_key == "any" or time_key in (showing.time_of_day, showing.showtime.lower()))
            and showing.available_seats >= tickets
        ]
        if not candidates:
            # Relax the time filter before giving up on the genre.
            candidates = [
                showing
                for showing in self.showings
                if genre_key in showing.genres and showing.available_seats >= tickets
            ]

        movies = [
            {
                "title": showing.title,
                "theater": showing.theater,
                "showtime": showing.showtime,
                "date": booking_date,
                "seats": [f"{showing.seat_row}{7 + offset}" for offset in range(tickets)],
                "price": f"${showing.price:.2f} per ticket",
                "total": f"${showing.price * tickets:.2f}",
                "available_seats": showing.available_seats,
                "rating": showing.rating,
                "duration": f"{showing.duration_minutes} minutes",
            }
            for showing in candidates[:3]
        ]
        return {
            "action": "movie_search_simulated",
            "search_query": f"{genre} movies {preferred_time} near {location}",
            "found_movies": movies,
            "recommendation": (
                f"{movies[0]['title']} at {movies[0]['theater']}" if movies else None
            ),
            "tickets_requested": tickets,
            "real": False,
        }


def _product_payload(item: CatalogItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "price": f"${item.price:.2f}",
        "rating": item.rating,
        "url": item.url,
        "in_stock": True,
        "prime": item.prime,
        "reviews": item.reviews,
        "specs": list(item.tags),
    }
