import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from cleaning import SENTINEL_VALUES
from errors import ExtractionPreconditionError, GeocodeError
from models import ClientRecord, Coordinates, FileAnalysisResult, Row
from settings import GEOCODE_TIMEOUT_SECS, GEOCODE_URL, GOOGLE_MAPS_API_KEY

logger = logging.getLogger("medecin")


class Geocoder(Protocol):
    def resolve(self, address: str) -> Optional[Coordinates]:
        ...


class NullGeocoder:
    def resolve(self, address: str) -> Optional[Coordinates]:
        return None


class GoogleGeocoder:
    """Google Geocoding API client; every failure surfaces as GeocodeError."""

    def __init__(
        self,
        api_key: str = GOOGLE_MAPS_API_KEY,
        *,
        url: str = GEOCODE_URL,
        timeout: float = GEOCODE_TIMEOUT_SECS,
        session: Optional[requests.Session] = None,
        region: str = "fr",
    ) -> None:
        if not api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is not set")
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.region = region
        self.session = session or requests.Session()

    def resolve(self, address: str) -> Optional[Coordinates]:
        try:
            resp = self.session.get(
                self.url,
                params={"address": address, "key": self.api_key, "region": self.region},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise GeocodeError(f"Geocoding request failed for {address!r}: {e}") from e

        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK" or not payload.get("results"):
            raise GeocodeError(f"Geocoding failed for {address!r}: status={status} {payload.get('error_message', '')}".strip())

        location = payload["results"][0]["geometry"]["location"]
        return Coordinates(lat=float(location["lat"]), lng=float(location["lng"]))


# -----------------------------
# Field aliases (canonical first)
# -----------------------------
NAME_FIELDS = ("Nom", "name", "nom")
FIRST_NAME_FIELDS = ("firstName", "Prénom", "prénom", "prenom")
LAST_NAME_FIELDS = ("lastName",)
PHONE_FIELDS = ("phone", "téléphone", "telephone", "tel")
EMAIL_FIELDS = ("email", "mail")
ADDRESS_FIELDS = ("ADRESSE", "address", "adresse")
CITY_FIELDS = ("VILLE", "city", "ville")
SPECIALTY_FIELDS = ("SPECIALITE", "specialty", "spécialité", "specialite")


def _present(value: Any) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    if not v or v in SENTINEL_VALUES:
        return None
    return v


def _first(row: Row, fields: Sequence[str]) -> Optional[str]:
    for f in fields:
        v = _present(row.get(f))
        if v is not None:
            return v
    return None


def resolve_name(row: Row) -> Optional[str]:
    name = _first(row, NAME_FIELDS)
    if name:
        return name
    parts = [p for p in (_first(row, FIRST_NAME_FIELDS), _first(row, LAST_NAME_FIELDS)) if p]
    return " ".join(parts) or None


def _geocode(geocoder: Geocoder, address: str) -> Optional[Coordinates]:
    try:
        return geocoder.resolve(address)
    except Exception as e:
        logger.warning(json.dumps({
            "event": "geocode_failed",
            "address": address,
            "error_type": type(e).__name__,
            "error": str(e),
        }, ensure_ascii=False))
        return None


def row_to_client(row: Row, geocoder: Optional[Geocoder] = None) -> Optional[ClientRecord]:
    name = resolve_name(row)
    if not name:
        return None

    address = _first(row, ADDRESS_FIELDS)
    city = _first(row, CITY_FIELDS)
    coordinates = None
    if address and geocoder is not None:
        query = f"{address}, {city}" if city and city.lower() not in address.lower() else address
        coordinates = _geocode(geocoder, query)

    return ClientRecord(
        name=name,
        phone=_first(row, PHONE_FIELDS),
        email=_first(row, EMAIL_FIELDS),
        address=address,
        city=city,
        specialty=_first(row, SPECIALTY_FIELDS),
        coordinates=coordinates,
    )


def extract_clients(result: FileAnalysisResult, geocoder: Optional[Geocoder] = None) -> List[ClientRecord]:
    """
    Build client records from a cleaned analysis.

    Rows without a usable name are skipped. Geocoding is best effort: a failing
    or slow geocoder leaves the record without coordinates.
    """
    if not result.is_cleaned:
        raise ExtractionPreconditionError(
            f"Le fichier {result.file_name!r} doit être nettoyé avant l'extraction des clients"
        )

    clients: List[ClientRecord] = []
    skipped = 0
    for row in result.data:
        client = row_to_client(row, geocoder)
        if client is None:
            skipped += 1
            continue
        clients.append(client)

    stats: Dict[str, Any] = {
        "event": "extraction_done",
        "file_name": result.file_name,
        "clients": len(clients),
        "skipped_rows": skipped,
        "geocoded": sum(1 for c in clients if c.coordinates is not None),
    }
    logger.info(json.dumps(stats, ensure_ascii=False))
    return clients
