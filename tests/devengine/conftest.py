import itertools
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from devengine.collaborators.base import (
    AnalysisResult,
    Collaborators,
    DocumentVersion,
    ResolvingQualificationSource,
)
from devengine.config import Settings
from devengine.db import models  # noqa: F401
from devengine.db.base import Base, build_engine
from devengine.jobs.auto_run import AutoRunOrchestrator, JobLockRegistry
from devengine.qualifications import canonical_qualifications

PROJECT = "proj-1"


class FakeQualifications(ResolvingQualificationSource):
    def __init__(self, **fields):
        self.fields = {"format": "film", "title": "Night Shift"}
        self.fields.update(fields)

    def get_project_fields(self, project_id):
        return dict(self.fields)


class FakeDocuments:
    """In-memory document store; one document id per doc type."""

    def __init__(self, qualifications: FakeQualifications):
        self.qualifications = qualifications
        self.versions: List[DocumentVersion] = []
        self._ids = itertools.count(1)

    def add(
        self,
        doc_type: str,
        text: str = "",
        source: Optional[DocumentVersion] = None,
        core_fields: Optional[Dict[str, str]] = None,
        stamp: bool = True,
    ) -> DocumentVersion:
        existing = [v for v in self.versions if v.doc_type == doc_type]
        qualifications = self.qualifications.get_canonical_qualifications(PROJECT)
        version = DocumentVersion(
            document_id=f"doc-{doc_type}",
            version_id=f"v{next(self._ids)}",
            doc_type=doc_type,
            text=text or f"{doc_type} draft",
            version_number=len(existing) + 1,
            depends_on_resolver_hash=(
                self.qualifications.compute_qualification_hash(PROJECT) if stamp else None
            ),
            source_version_id=source.version_id if source else None,
            core_fields=dict(core_fields if core_fields is not None else (source.core_fields if source else {})),
            metadata={"qualifications": canonical_qualifications(qualifications)},
        )
        self.versions.append(version)
        return version

    def fetch_document(self, document_id=None, version_id=None):
        for version in reversed(self.versions):
            if version_id and version.version_id != version_id:
                continue
            if document_id and version.document_id != document_id:
                continue
            return version
        return None

    def latest_version(self, project_id, doc_type):
        matches = [v for v in self.versions if v.doc_type == doc_type]
        return matches[-1] if matches else None


class FakeEngine:
    """Analyzer/rewriter/generator with scripted results."""

    def __init__(self, documents: FakeDocuments):
        self.documents = documents
        self.readiness: Any = 90
        self.risk_flags: List[str] = []
        self.notes: List[Any] = []
        self.convergence = "converging"
        self.generated_core_fields: Optional[Dict[str, str]] = None
        self.analyze_hook = None
        self.rewrite_hook = None
        self.fail_with: Optional[Exception] = None
        self.calls: List[tuple] = []

    def _next(self, value):
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    def analyze(self, document, context):
        self.calls.append(("analyze", document.version_id))
        if self.analyze_hook:
            self.analyze_hook(document)
        if self.fail_with:
            raise self.fail_with
        notes = self.notes.pop(0) if self.notes else []
        return AnalysisResult(
            ci=80, gp=75, gap=5,
            readiness=self._next(self.readiness),
            confidence=70,
            notes=notes,
            convergence=self.convergence,
            risk_flags=list(self.risk_flags),
            protect=["the ending"],
        )

    def rewrite(self, document, directives, protect_items):
        self.calls.append(("rewrite", document.version_id, list(directives)))
        if self.rewrite_hook:
            self.rewrite_hook(document)
        source = self.documents.fetch_document(version_id=document.source_version_id) if document.source_version_id else None
        version = self.documents.add(document.doc_type, text=document.text + "\n(revised)", source=source,
                                     core_fields=document.core_fields)
        return version

    def generate(self, target_stage, source_document, protect_items):
        self.calls.append(("generate", target_stage, source_document.version_id))
        if self.fail_with:
            raise self.fail_with
        return self.documents.add(target_stage, source=source_document, core_fields=self.generated_core_fields)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def qualifications():
    return FakeQualifications()


@pytest.fixture
def documents(qualifications):
    return FakeDocuments(qualifications)


@pytest.fixture
def engine(documents):
    return FakeEngine(documents)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def orchestrator(engine, documents, qualifications, settings, session_factory):
    collaborators = Collaborators(engine=engine, documents=documents, qualifications=qualifications)
    return AutoRunOrchestrator(
        collaborators,
        settings=settings,
        session_factory=session_factory,
        locks=JobLockRegistry(),
    )
