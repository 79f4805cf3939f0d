# engagement_crm/services/insights_prompt.py

MEETING_INSIGHTS_PROMPT = """You are an analytics assistant for a meeting platform. Based on the provided meeting statistics, generate insights and recommendations.

Given the following data:
- Total Members: {total_members}
- Total Meetings: {total_meetings}
- Average Engagement Rate: {avg_engagement_rate}%
- Meeting Duration Breakdown (minutes: count): {duration_breakdown}
- Meeting Timeline (date: number of meetings): {timeline}

IMPORTANT: Return ONLY valid JSON. Do not wrap the response in markdown code blocks or add any other text.

Generate a JSON response with exactly this structure:
{{
  "communityInsights": [
    "string with insight about attendance rate",
    "string with insight about average session duration",
    "string with insight about consistent count",
    "string with insight about community size"
  ],
  "recommendations": [
    "string with scheduling recommendation",
    "string with meeting duration recommendation",
    "string with follow-up recommendation",
    "string with recording sharing recommendation"
  ]
}}

STYLE REQUIREMENTS:
- Keep each point to ONE SHORT SENTENCE (max 12 words)
- Use specific numbers from the data
- Be direct and factual, not descriptive

Return only the JSON object."""
