"""mssql-mcp: Microsoft SQL Server tools over the Model Context Protocol."""
