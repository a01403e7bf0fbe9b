"""Error taxonomy for every pipeline stage"""


class SitePubError(Exception):
    """Base exception for sitepub. Carries the failing identifier when known."""
    stage = "pipeline"

    def __init__(self, message: str, identifier: str = None):
        super().__init__(message)
        self.message = message
        self.identifier = identifier

    def __str__(self) -> str:
        if self.identifier:
            return f"{self.identifier}: {self.message}"
        return self.message


# --- fetch ---

class ManifestInvalid(SitePubError):
    """Raised when the dependency manifest is malformed or not pinned."""
    stage = "fetch"


class DependencyUnresolvable(SitePubError):
    """Raised when a package version cannot be retrieved from the registry."""
    stage = "fetch"


class DependencyFileMissing(SitePubError):
    """Raised when a fetched package does not contain a declared file."""
    stage = "fetch"


class DependencyFetchFailed(SitePubError):
    """Aggregate of every manifest entry that failed in one fetch pass."""
    stage = "fetch"

    def __init__(self, errors: list[SitePubError]):
        self.errors = errors
        names = ", ".join(sorted(e.identifier or "?" for e in errors))
        super().__init__(f"{len(errors)} dependency failure(s): {names}")

    def __str__(self) -> str:
        return "\n".join([self.message] + [f"  {e}" for e in self.errors])


# --- load ---

class MetadataInvalid(SitePubError):
    """Raised when a document's front matter is missing or ill-typed."""
    stage = "load"


class DuplicateIdentifier(SitePubError):
    """Raised when two documents derive the same identifier."""
    stage = "load"


# --- build ---

class RenderError(SitePubError):
    """Raised when a document fails to render through its template."""
    stage = "build"


class OutputCollision(SitePubError):
    """Raised when two build targets map to the same output path."""
    stage = "build"


# --- package ---

class PackagingError(SitePubError):
    """Raised when the build output cannot be packed into an artifact."""
    stage = "package"


# --- publish ---

class PublishBusy(SitePubError):
    """Raised when another publish changed the live pointer concurrently."""
    stage = "publish"


class PublishRejected(SitePubError):
    """Raised when an artifact fails its integrity check before the swap."""
    stage = "publish"


class PublishTimeout(SitePubError):
    """Raised when the hosting target does not acknowledge in time."""
    stage = "publish"
