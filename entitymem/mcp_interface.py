"""
MCP Interface Layer using fastmcp for agent orchestration.

The configured memory variant decides which tool set is exposed: the graph
tools (entities, observations, relations) or the flat tools (plain memories).
"""
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .services.flat_memory import FlatMemoryService
from .services.memory_factory import MemoryServices, get_memory_services
from .services.memory_tools import MemoryToolAdapter
from .services.validation import MemoryValidationError
from .utils.config import config
from .utils.logging_config import get_logger
from .utils.sqlite_store import StoreUnavailableError

logger = get_logger(__name__)


def _args(**kwargs) -> Dict[str, Any]:
    """Drop arguments the caller left out so the tool defaults apply."""
    return {key: value for key, value in kwargs.items() if value is not None}


def _run_tool(adapter: MemoryToolAdapter, user_id: str, tool_name: str, args: Dict[str, Any],
              project_id: Optional[str]) -> str:
    try:
        result = adapter.execute(user_id, tool_name, args, project_id)
    except Exception as e:
        logger.error(f'Unexpected error in MCP tool {tool_name}: {e}')
        raise ToolError(f'{tool_name} failed: {e}')

    if result.is_error:
        raise ToolError(result.text)

    logger.debug(f'MCP tool {tool_name} completed for user {user_id}')
    return result.text


def _run_flat(operation: str, fn: Callable[..., Any], *args) -> Any:
    try:
        return fn(*args)
    except MemoryValidationError as e:
        raise ToolError(f'Invalid arguments for {operation}: {e}')
    except StoreUnavailableError as e:
        logger.error(f'Memory store error in MCP {operation}: {e}')
        raise ToolError(f'{operation} failed: memory store unavailable')


def register_graph_tools(mcp: FastMCP, adapter: MemoryToolAdapter) -> None:
    """Expose the graph memory tools on an MCP server."""

    @mcp.tool()
    def store_entity(user_id: str,
                     name: str,
                     entity_type: str,
                     observations: Optional[List[str]] = None,
                     project_id: Optional[str] = None) -> str:
        """Store an entity (person, business, concept, event, other) that the user mentions.

        If the entity already exists, new observations are added to it.

        Args:
            user_id: User ID
            name: Name of the entity (e.g. 'Acme Corp', 'John Smith')
            entity_type: person, business, concept, event or other
            observations: Facts about this entity
            project_id: Optional project scope
        """
        return _run_tool(adapter, user_id, 'store_entity',
                         _args(name=name, entity_type=entity_type, observations=observations), project_id)

    @mcp.tool()
    def store_observation(user_id: str,
                          entity_name: str,
                          observation: str,
                          importance: Optional[str] = None,
                          project_id: Optional[str] = None) -> str:
        """Add a fact to an entity that is already stored.

        Args:
            user_id: User ID
            entity_name: Name of the entity to add the observation to
            observation: The fact, as specific as possible
            importance: critical, important, normal (default) or temporary
            project_id: Optional project scope
        """
        return _run_tool(adapter, user_id, 'store_observation',
                         _args(entity_name=entity_name, observation=observation, importance=importance), project_id)

    @mcp.tool()
    def store_relation(user_id: str,
                       from_entity: str,
                       to_entity: str,
                       relation_type: str,
                       project_id: Optional[str] = None) -> str:
        """Store a relationship between two stored entities (e.g. works_for, owns, located_in).

        Args:
            user_id: User ID
            from_entity: Source entity name
            to_entity: Target entity name
            relation_type: Type of relationship
            project_id: Optional project scope
        """
        return _run_tool(adapter, user_id, 'store_relation',
                         _args(from_entity=from_entity, to_entity=to_entity, relation_type=relation_type),
                         project_id)

    @mcp.tool()
    def search_memory(user_id: str, query: str, limit: Optional[int] = None, project_id: Optional[str] = None) -> str:
        """Search memory for relevant information before answering questions about the user.

        Args:
            user_id: User ID
            query: What to search for
            limit: Maximum results to return (default: 5)
            project_id: Optional project scope
        """
        return _run_tool(adapter, user_id, 'search_memory', _args(query=query, limit=limit), project_id)

    @mcp.tool()
    def get_entity(user_id: str,
                   name: str,
                   include_relations: bool = True,
                   project_id: Optional[str] = None) -> str:
        """Get everything stored about one entity.

        Args:
            user_id: User ID
            name: Name of the entity to retrieve
            include_relations: Include relationships with other entities (default: true)
            project_id: Optional project scope
        """
        return _run_tool(adapter, user_id, 'get_entity', _args(name=name, include_relations=include_relations),
                         project_id)

    @mcp.tool()
    def list_entities(user_id: str, project_id: Optional[str] = None) -> str:
        """List every entity remembered for this user, grouped by type."""
        return _run_tool(adapter, user_id, 'list_entities', {}, project_id)

    @mcp.tool()
    def delete_entity(user_id: str, name: str, project_id: Optional[str] = None) -> str:
        """Delete an entity with all its observations and relations."""
        return _run_tool(adapter, user_id, 'delete_entity', _args(name=name), project_id)

    @mcp.tool()
    def clear_all_memories(user_id: str, confirm: bool = False, project_id: Optional[str] = None) -> str:
        """Delete ALL memories for this user. Cannot be undone; requires confirm=true."""
        return _run_tool(adapter, user_id, 'clear_all_memories', _args(confirm=confirm), project_id)

    @mcp.tool()
    def memory_stats(user_id: str, project_id: Optional[str] = None) -> str:
        """Entity, observation and relation counts for this user."""
        return _run_tool(adapter, user_id, 'memory_stats', {}, project_id)

    @mcp.tool()
    def get_memory_summary(user_id: str, project_id: Optional[str] = None) -> str:
        """The saved memory summary and whether it is out of date."""
        return _run_tool(adapter, user_id, 'get_memory_summary', {}, project_id)

    @mcp.tool()
    def save_memory_summary(user_id: str, summary: str, project_id: Optional[str] = None) -> str:
        """Save a natural-language summary of everything remembered for this user."""
        return _run_tool(adapter, user_id, 'save_memory_summary', _args(summary=summary), project_id)


def register_flat_tools(mcp: FastMCP, memory: FlatMemoryService) -> None:
    """Expose the flat memory tools on an MCP server."""

    @mcp.tool()
    def add_memory(user_id: str,
                   content: str,
                   importance: Optional[str] = None,
                   project_id: Optional[str] = None) -> List[Dict[str, str]]:
        """Remember a short fact about the user.

        Args:
            user_id: User ID
            content: The fact to remember
            importance: critical, important, normal (default) or temporary
            project_id: Optional project scope

        Returns:
            List with the stored memory as {id, text}
        """
        return _run_flat('add_memory', memory.add_memory, user_id, content, _args(importance=importance), project_id)

    @mcp.tool()
    def search_memory(user_id: str,
                      query: str,
                      limit: Optional[int] = None,
                      project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Search remembered facts, best match first, as {id, text, score}."""
        return _run_flat('search_memory', memory.search_memory, user_id, query, limit, project_id)

    @mcp.tool()
    def get_all_memories(user_id: str, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Every remembered fact, newest first, as {id, text, created_at}."""
        return _run_flat('get_all_memories', memory.get_all_memories, user_id, project_id)

    @mcp.tool()
    def delete_memory(user_id: str, memory_id: str, project_id: Optional[str] = None) -> bool:
        """Delete one remembered fact by id; false if it does not exist."""
        return _run_flat('delete_memory', memory.delete_memory, user_id, memory_id, project_id)

    @mcp.tool()
    def delete_all_memories(user_id: str, confirm: bool = False, project_id: Optional[str] = None) -> bool:
        """Delete every remembered fact for this user. Cannot be undone; requires confirm=true."""
        if not confirm:
            raise ToolError('Nothing was deleted. Please confirm by setting confirm=true.')
        return _run_flat('delete_all_memories', memory.delete_all_memories, user_id, project_id)


def build_mcp(services: Optional[MemoryServices] = None) -> FastMCP:
    """Create the MCP server for the configured memory variant.

    Args:
        services: Memory services to expose; defaults to the process-wide instance

    Returns:
        FastMCP application with either the graph or the flat tool set
    """
    services = services or get_memory_services()
    mcp = FastMCP('Entity Memory')

    if services.variant == 'graph':
        register_graph_tools(mcp, MemoryToolAdapter(services.graph_memory, services.config.memory.tool_search_limit))
    else:
        register_flat_tools(mcp, services.flat_memory)

    logger.info(f'MCP server configured with {services.variant} memory tools')
    return mcp


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    build_mcp().run(transport=transport, host=host, port=port)
