"""Records returned by the API.

Field names are the JSON names used on the wire (camelCase), the same way
the response models of the HTTP layer are declared.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


FileStatus = Literal["added", "removed", "modified", "renamed"]
DeploymentStatus = Literal["success", "failure", "in_progress", "queued", "pending"]
HoneycombQueryType = Literal["errors", "latency", "throughput", "traces"]


class ChangedFile(BaseModel):
    filename: str
    status: FileStatus = "modified"
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    patch: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> str:
        # GitHub also reports copied/changed/unchanged
        return v if v in ("added", "removed", "modified", "renamed") else "modified"

    @classmethod
    def from_github(cls, f: Dict[str, Any]) -> "ChangedFile":
        return cls(
            filename=f.get("filename") or "",
            status=f.get("status") or "modified",
            additions=int(f.get("additions") or 0),
            deletions=int(f.get("deletions") or 0),
            patch=f.get("patch"),
        )


class ChangelogCommit(BaseModel):
    sha: str
    shortSha: str
    message: str
    author: str
    date: str
    ticketRefs: List[str] = Field(default_factory=list)
    url: str = ""


class ChangelogContext(BaseModel):
    fromSha: str
    toSha: str
    commits: List[ChangelogCommit] = Field(default_factory=list)
    totalCommits: int = 0
    allTickets: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    compareUrl: str = ""
    files: List[ChangedFile] = Field(default_factory=list)
    summary: Optional[str] = None


class ComponentVersionChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    componentName: str
    componentPath: str
    fromVersion: str
    toVersion: str
    environment: str
    changelog: Optional[ChangelogContext] = None

    def with_changelog(self, changelog: ChangelogContext) -> "ComponentVersionChange":
        return self.model_copy(update={"changelog": changelog})


class MachConfigDeployment(BaseModel):
    commitSha: str
    commitMessage: str
    author: str
    date: str
    components: List[ComponentVersionChange] = Field(default_factory=list)


class RecentDeployment(BaseModel):
    sha: str
    shortSha: str
    message: str
    author: str
    date: str
    environments: List[str] = Field(default_factory=list)


class CommitInfo(BaseModel):
    sha: str
    message: str
    author: str
    date: str
    ticketRefs: List[str] = Field(default_factory=list)


class PullRequestInfo(BaseModel):
    number: int
    title: str
    mergedBy: str
    url: str


class DeploymentInfo(BaseModel):
    status: DeploymentStatus
    environment: str
    url: str
    completedAt: str
    workflowName: str


class CommitContext(BaseModel):
    commit: CommitInfo
    pr: Optional[PullRequestInfo] = None
    deployment: Optional[DeploymentInfo] = None


class JiraTicket(BaseModel):
    key: str
    summary: str = ""
    status: str = ""
    type: str = ""
    priority: Optional[str] = None
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    description: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    url: str
    error: Optional[str] = None


class JiraStatus(BaseModel):
    configured: bool
    connectionFailed: bool
    failureReason: Optional[str] = None
    retryIn: Optional[int] = None


class ReleaseHealthTimeSeries(BaseModel):
    intervals: List[str] = Field(default_factory=list)
    crashFreeSessions: List[float] = Field(default_factory=list)
    sessions: List[float] = Field(default_factory=list)
    crashedSessions: List[float] = Field(default_factory=list)


class ReleaseHealthMetrics(BaseModel):
    release: str
    environment: str
    crashFreeSessionRate: float
    crashFreeUserRate: float
    adoptionRate: float
    totalSessions: int
    totalUsers: int
    crashedSessions: int
    erroredSessions: int
    healthySessions: int
    abnormalSessions: int
    unhandledErrors: int
    timeSeries: ReleaseHealthTimeSeries


class HoneycombQueryUrl(BaseModel):
    type: HoneycombQueryType
    label: str
    description: str
    url: str


class ReleaseSummaries(BaseModel):
    business: str
    developer: str
    devops: str


class SummaryResponse(BaseModel):
    summaries: ReleaseSummaries
    commit: Dict[str, Any]
    ticketDetails: List[JiraTicket] = Field(default_factory=list)
    jiraStatus: JiraStatus
    cached: bool = False


class IntegrationConfig(BaseModel):
    id: str
    name: str
    description: str
    status: Literal["connected", "not_configured", "error"]
    configuredVia: Optional[Literal["env", "local"]] = None
    details: Optional[str] = None
    error: Optional[str] = None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None
