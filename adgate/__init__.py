"""
AdGate Backend Package.

Decision-gating and confidence-propagation service for ad creative analysis.
Decides, per creative, whether enough reliable evidence exists to score,
diagnose or recommend, and at what confidence.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, dependencies and domain exceptions
    - models: Pydantic schemas and enums
    - services: Gate evaluators, orchestration, baselines, recommendations
    - jobs: Cron entry points (baseline refresh, alert sweep)
    - sql: Parameterized SQL queries and schema DDL
"""

__version__ = "1.0.0"
