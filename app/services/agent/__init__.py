"""Agent services.

Imports are intentionally NOT eagerly loaded here. Use explicit imports:
    from app.services.agent.core import AgentQueryService
    from app.services.agent.learning import LearningLoop
"""
