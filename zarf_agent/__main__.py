"""Run the agent with `python -m zarf_agent`."""

from zarf_agent.tool.agent import main

main()
