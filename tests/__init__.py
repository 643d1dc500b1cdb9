"""
Test Suite for the Provider Harness

Test Structure:
- unit/: Scenario table, validator, executor, environment and runner tests
  against a mocked docker client
- integration/: Scenarios run against a live service container (requires
  Docker and a built provider binary)
"""
