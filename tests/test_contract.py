from agent_loop.model import build_openai_tools
from demo_tools.tools import list_tool_definitions


def test_tool_registry_matches_openai_specs():
    tool_names = {tool.name for tool in list_tool_definitions()}
    openai_tools = build_openai_tools(list_tool_definitions())
    openai_names = {tool["function"]["name"] for tool in openai_tools}
    assert tool_names == openai_names


def test_tool_parameters_are_object_schemas():
    for tool in build_openai_tools(list_tool_definitions()):
        assert tool["function"]["parameters"]["type"] == "object"
