"""Best-effort execution of query text against the store.

This is not a SQL engine.  It recognizes a handful of fixed patterns and
silently ignores everything else:

    SELECT ... FROM patients
        WHERE date_of_birth < '<date>'     (string comparison on the ISO dob)
        WHERE gender = '<value>'
        ORDER BY last_name [ASC|DESC]
        ORDER BY registration_date [ASC|DESC]
    SELECT ... FROM allergies              (whole collection)
    SELECT ... FROM saved_queries          (whole collection)

Matching is on the lowercased text with runs of whitespace collapsed, so
values in quotes are compared lowercased too.  DESC anywhere in the text
makes every recognized ORDER BY descending.
"""
import logging
import re
import time

from pydantic import BaseModel

from patientregistry.schema import ALLERGIES, PATIENTS, SAVED_QUERIES

logger = logging.getLogger(__name__)

_DOB_BEFORE = re.compile(r"date_of_birth\s*<\s*'([^']+)'")
_GENDER_EQUALS = re.compile(r"gender\s*=\s*'([^']+)'")


class QueryResult(BaseModel):
    results: list[dict] = []
    # seconds, to the millisecond
    time: float = 0
    count: int = 0

    def to_dict(self) -> dict:
        return self.model_dump()


class QueryExecutor:
    def __init__(self, store):
        """:param store  a ready PatientStore; only read from"""
        self.store = store

    def execute(self, text: str) -> QueryResult:
        """Run text.  Never raises: failures give an empty result."""
        logger.debug(f"Executing query (simulated): {text}")
        start = time.perf_counter()
        try:
            query = " ".join(text.lower().split())
            if not query.startswith("select"):
                logger.debug(f"Not a SELECT, ignoring: {text}")
                return QueryResult()
            rows = self._select(query)
        # whatever goes wrong, the caller gets an empty result
        except Exception as err:  # pylint: disable=broad-except
            logger.error(f"Error executing query {text!r}: {err}")
            return QueryResult()

        elapsed = time.perf_counter() - start
        return QueryResult(results=rows, time=round(elapsed, 3), count=len(rows))

    def _select(self, query: str) -> list[dict]:
        if "from patients" in query:
            return self._select_patients(query)
        if "from allergies" in query:
            return [allergy.to_dict() for allergy in self.store.list(ALLERGIES)]
        if "from saved_queries" in query:
            return [saved.to_dict() for saved in self.store.list(SAVED_QUERIES)]
        logger.debug(f"No recognized table in: {query}")
        return []

    @staticmethod
    def _where(query: str, patients: list) -> list:
        if "where date_of_birth <" in query:
            match = _DOB_BEFORE.search(query)
            if match:
                before = match.group(1)
                patients = [p for p in patients if p.dob.isoformat() < before]

        if "where gender =" in query:
            match = _GENDER_EQUALS.search(query)
            if match:
                gender = match.group(1)
                patients = [p for p in patients if p.gender == gender]
        return patients

    @staticmethod
    def _order_by(query: str, patients: list) -> list:
        descending = "desc" in query
        if "order by last_name" in query:
            patients = sorted(
                patients,
                key=lambda p: (p.last_name.casefold(), p.last_name),
                reverse=descending,
            )
        if "order by registration_date" in query:
            patients = sorted(
                patients, key=lambda p: p.registration_date, reverse=descending
            )
        return patients

    def _select_patients(self, query: str) -> list[dict]:
        patients = list(self.store.list(PATIENTS))
        patients = self._where(query, patients)
        patients = self._order_by(query, patients)
        return [patient.to_dict() for patient in patients]
