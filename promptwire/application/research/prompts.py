from typing import Dict, Any, List, Optional, Type
from pydantic import BaseModel, Field

from promptwire.domain.formatting.record_encoders import format_structured
from promptwire.domain.formatting.tag_formatter import format_tag
from promptwire.domain.prompting.prompt_compiler import create_prompt
from promptwire.domain.schema.schema_converter import to_descriptor
from promptwire.domain.streaming.handlers import text_handler, structured_output_handler
from promptwire.domain.streaming.tag_parser import create_parser
from promptwire.application.research.schemas import Research, SearchResult, SearchResultPayload


def format_research(research: Research) -> str:
    """Embed the research state as JSON"""
    return format_structured("research", research, {"id": research.id})


class SearchResultsInput(BaseModel):
    """Values needed to ask the model about a page of search results"""
    research: Research
    query: str
    goal: str
    results: List[SearchResult] = Field(default_factory=list)
    output_schema: Type[BaseModel] = SearchResultPayload


SEARCH_RESULTS_TEMPLATE = """Given the following results from a SERP search for the query, generate a list of learnings from the results.
Return a maximum of 5 learnings, but feel free to return less if the results are clear.
Make sure each learning is unique and not similar to each other.
The learnings should be concise and to the point, as detailed and information dense as possible.
Make sure to include any entities like people, places, companies, products, things, etc in the learnings, as well as any exact metrics, numbers, or dates.
The learnings will be used to research the topic further.
Given the following query and results from the research, create some follow up queries to clarify the research direction.
Return a maximum of 2 queries, but feel free to return less if the original query is clearer

{{research}}

<query>{{query}}</query>

<goal>{{goal}}</goal>

<results>
{{results}}
</results>

Here is the json schema:
{{schema}}

Here's how you structure your output:
<json>
[JSON DATA]
</json>

Example:
<json>
{
  "learnings": [...],
  "followUpQueries": [...]
}
</json>
"""


def _project_search_results(input: SearchResultsInput) -> Dict[str, Any]:
    return {
        "research": format_research(input.research),
        "query": input.query,
        "goal": input.goal,
        "results": [
            format_tag("result", {"url": result.url}, result.content)
            for result in input.results
        ],
        "schema": to_descriptor(input.output_schema, "schema"),
    }


search_results_prompt = create_prompt(SEARCH_RESULTS_TEMPLATE, _project_search_results)


def _search_results_state() -> Dict[str, Optional[Any]]:
    return {"think": None, "output": None}


search_results_parser = create_parser(
    _search_results_state,
    {
        "think": text_handler("think"),
        "json": structured_output_handler(SearchResultPayload, field="output"),
    },
    tags=["think", "json"]
)


FINAL_REPORT_TEMPLATE = """
Given the following research, write a final report on the topic using the learnings from research.
Make it as detailed as possible, aim for 3 or more pages, include ALL the learnings from research.

Here is all the data from research:
{{research}}

Return your report in markdown format. Always send the full report, do not cut it off.
"""


final_report_prompt = create_prompt(
    FINAL_REPORT_TEMPLATE,
    lambda research: {"research": format_research(research)}
)
