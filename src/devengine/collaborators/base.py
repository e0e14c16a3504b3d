from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

from devengine.qualifications import compute_resolver_hash, resolve_qualifications


@dataclass
class DocumentVersion:
    document_id: str                             # project_documents.id in the document store
    version_id: str                              # project_document_versions.id
    doc_type: str                                # ladder stage id
    text: str = ""
    version_number: int = 1
    depends_on_resolver_hash: Optional[str] = None
    source_version_id: Optional[str] = None      # upstream version it was generated from
    core_fields: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def ref(self) -> Dict[str, Any]:
        """Opaque pointer stored in step output_ref."""
        return {"doc_id": self.document_id, "version_id": self.version_id, "doc_type": self.doc_type}


@dataclass
class AnalysisResult:
    ci: Optional[float] = None
    gp: Optional[float] = None
    gap: Optional[float] = None
    readiness: Optional[float] = None
    confidence: Optional[float] = None
    notes: List[Dict[str, Any]] = field(default_factory=list)
    convergence: Optional[str] = None            # trajectory: converging, stalled, eroding...
    risk_flags: List[str] = field(default_factory=list)
    protect: List[str] = field(default_factory=list)
    summary: Optional[str] = None


class DevelopmentEngine(Protocol):
    """Scores, rewrites and generates documents. Implementations live outside this package."""

    def analyze(self, document: DocumentVersion, context: Mapping[str, Any]) -> AnalysisResult:
        ...

    def rewrite(
        self,
        document: DocumentVersion,
        directives: List[str],
        protect_items: List[str],
    ) -> DocumentVersion:
        """Return the new version produced by the rewrite."""
        ...

    def generate(
        self,
        target_stage: str,
        source_document: DocumentVersion,
        protect_items: List[str],
    ) -> DocumentVersion:
        """Return the first draft of `target_stage` built from `source_document`."""
        ...


class DocumentStore(Protocol):
    def fetch_document(
        self,
        document_id: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> Optional[DocumentVersion]:
        """Read one version; the latest version of the document when no version id is given."""
        ...

    def latest_version(self, project_id: str, doc_type: str) -> Optional[DocumentVersion]:
        ...


class QualificationSource(Protocol):
    def get_canonical_qualifications(self, project_id: str) -> Dict[str, Any]:
        ...

    def compute_qualification_hash(self, project_id: str) -> str:
        ...


class ResolvingQualificationSource:
    """Base for sources that only know raw project fields; resolves and hashes them."""

    def get_project_fields(self, project_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def get_canonical_qualifications(self, project_id: str) -> Dict[str, Any]:
        fields = dict(self.get_project_fields(project_id))
        overrides = fields.pop("overrides", None)
        guardrails = fields.pop("guardrails", None)
        return resolve_qualifications(fields, overrides, guardrails).values

    def compute_qualification_hash(self, project_id: str) -> str:
        return compute_resolver_hash(self.get_canonical_qualifications(project_id))


@dataclass
class Collaborators:
    engine: DevelopmentEngine
    documents: DocumentStore
    qualifications: QualificationSource
