"""Terminal rendering for edgesite.

Modules
-------
renderer
    ``DeploymentRenderer`` turns routing tables, desired states and
    ``DeploymentResult`` into Rich renderables.
"""
