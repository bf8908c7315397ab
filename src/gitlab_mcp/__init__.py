"""gitlab-mcp: MCP server exposing GitLab projects, files, commits and users to agents."""

__version__ = "0.1.0"
