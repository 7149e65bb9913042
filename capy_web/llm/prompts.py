"""Prompt templates for the Gemini research collaborator."""

PLANNING_PROMPT = """You are planning web research for the objective below.

Objective: {query}
Context: {context}
Known relevant domains: {known_domains}

Break the objective into 1-6 specific, answerable questions and list the
domains most likely to hold authoritative answers. Prefer official sites,
documentation and filings over reviews and forums.

Respond ONLY with valid JSON in this format:
{{
  "questions": [
    {{"question": "What does Acme charge for its Pro plan?", "priority": 10, "extraction_hints": ["pricing"]}}
  ],
  "target_domains": ["acme.com"],
  "domain_expectations": [
    {{"domain": "acme.com", "expected_pages": ["/pricing"], "extraction_targets": ["pricing"]}}
  ]
}}
"""

EXTRACTION_PROMPT = """Extract structured facts from the page text below.

Page URL: {url}
Extraction targets: {targets}

Page text:
{text}

Return one record per distinct fact group. Use a target name as
"schema_name" and put the extracted values in "fields" as flat key/value
pairs. Omit anything the page does not state explicitly.

Respond ONLY with valid JSON in this format:
{{
  "records": [
    {{"schema_name": "pricing", "fields": {{"plan": "Pro", "price": "$49/month"}}}}
  ]
}}
"""

# Page text beyond this many characters is not sent for extraction
MAX_EXTRACTION_CHARS = 12_000
