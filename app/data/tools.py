"""Static tool catalog advertised to the playground front-end.

Entries use the OpenAI tool shape: built-in tools carry only a ``type``,
function tools a JSON-schema ``parameters`` block.
"""

AVAILABLE_TOOLS: list[dict] = [
    {
        "type": "web_search_preview",
        "description": "A tool that enables the model to search the web for up-to-date information",
    },
    {
        "type": "function",
        "function": {
            "name": "calculate_expression",
            "description": "Calculate the result of a mathematical expression",
            "parameters": {
                "type": "object",
                "properties": {
                    "expression": {
                        "type": "string",
                        "description": "The mathematical expression to calculate (e.g., '2+2', 'sin(30)', 'sqrt(144)')",
                    },
                },
                "required": ["expression"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_current_weather",
            "description": "Get the current weather in a given location",
            "parameters": {
                "type": "object",
                "properties": {
                    "location": {
                        "type": "string",
                        "description": "The city and state, e.g. San Francisco, CA",
                    },
                    "unit": {
                        "type": "string",
                        "enum": ["celsius", "fahrenheit"],
                        "description": "The temperature unit to use. Default is celsius.",
                    },
                },
                "required": ["location"],
            },
        },
    },
]
