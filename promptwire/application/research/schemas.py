from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class ResearchStatus(str, Enum):
    """Research progress"""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ResearchQuery(BaseModel):
    """A search query together with the goal it serves"""
    query: str = Field(description="Search engine query")
    goal: str = Field(description="What the query should find out")


class Research(BaseModel):
    """Accumulated state of a deep research task"""
    id: str = Field(description="Research identifier")
    name: str = Field(description="Research topic")
    queries: List[ResearchQuery] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list, description="Open questions")
    learnings: List[str] = Field(default_factory=list)
    status: ResearchStatus = Field(default=ResearchStatus.IN_PROGRESS)


class SearchResult(BaseModel):
    """Single hit returned by the search collaborator"""
    url: str
    title: Optional[str] = None
    content: str


class SearchResultPayload(BaseModel):
    """Learnings the model extracts from a page of search results"""
    model_config = ConfigDict(populate_by_name=True)

    learnings: List[str] = Field(description="Concise, information dense learnings, at most 5")
    follow_up_queries: List[str] = Field(
        alias="followUpQueries",
        description="Follow up queries to clarify the research direction, at most 2"
    )
