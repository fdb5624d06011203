"""
SpecSafe Memory - Project knowledge that survives between spec sessions.

SpecSafe Memory keeps, per project:
- Decisions recorded while writing specs (with rationale and alternatives)
- Design patterns discovered across specs (with usage counts)
- Technical, business and architectural constraints
- A bounded history of memory-affecting actions

The steering engine reads that knowledge back to warn about inconsistencies
and recommend reuse when a new spec is being written.
"""

__version__ = "0.1.0"
