"""
Shared fixtures for the protocol test-suite
"""

from typing import List, Optional

import pytest
from pydantic import BaseModel, Field

from promptwire.domain.streaming.handlers import text_handler, structured_output_handler
from promptwire.domain.streaming.tag_parser import create_parser


class SearchArgs(BaseModel):
    """Arguments of a search action"""
    query: str = Field(description="What to search for")
    limit: Optional[int] = None


class Findings(BaseModel):
    """Structured output used by parser tests"""
    learnings: List[str]
    sources: List[str] = Field(default_factory=list)


@pytest.fixture
def search_args_schema():
    return SearchArgs


@pytest.fixture
def findings_parser():
    """Parser with a reasoning tag and a structured-output tag"""
    return create_parser(
        lambda: {"think": None, "output": None},
        {
            "think": text_handler("think"),
            "json": structured_output_handler(Findings),
        },
        tags=["think", "json"]
    )
