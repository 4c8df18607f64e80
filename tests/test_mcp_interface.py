"""Tests for the MCP server wiring."""

from __future__ import annotations

import asyncio

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from entitymem.mcp_interface import build_mcp

from .conftest import build_services

GRAPH_TOOLS = {
    'store_entity', 'store_observation', 'store_relation', 'search_memory', 'get_entity', 'list_entities',
    'delete_entity', 'clear_all_memories', 'memory_stats', 'get_memory_summary', 'save_memory_summary'
}

FLAT_TOOLS = {'add_memory', 'search_memory', 'get_all_memories', 'delete_memory', 'delete_all_memories'}


async def _list_tools(mcp):
    async with Client(mcp) as client:
        return {tool.name for tool in await client.list_tools()}


async def _call(mcp, name, args):
    async with Client(mcp) as client:
        return await client.call_tool(name, args)


class TestGraphServer:
    def test_registers_graph_tools(self, services):
        assert asyncio.run(_list_tools(build_mcp(services))) == GRAPH_TOOLS

    def test_store_entity_call(self, services):
        mcp = build_mcp(services)
        result = asyncio.run(_call(mcp, 'store_entity', {
            'user_id': 'u1',
            'name': 'Acme Corp',
            'entity_type': 'business'
        }))
        assert result.content[0].text == 'Stored entity: **Acme Corp** (business)'
        assert services.graph_memory.get_entity('u1', 'Acme Corp') is not None

    def test_error_result_raises_tool_error(self, services):
        mcp = build_mcp(services)
        with pytest.raises(ToolError):
            asyncio.run(_call(mcp, 'store_observation', {
                'user_id': 'u1',
                'entity_name': 'Ghost',
                'observation': 'Boo'
            }))


class TestFlatServer:
    def test_registers_flat_tools(self, tmp_path):
        svc = build_services(tmp_path, variant='flat')
        try:
            assert asyncio.run(_list_tools(build_mcp(svc))) == FLAT_TOOLS
        finally:
            svc.close()
