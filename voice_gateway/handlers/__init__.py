"""
Handlers module for what happens during and after a call.

Key components:
- tool_dispatcher: runs the business actions the engine asks for (work
  orders, texts, zip codes, lookups, transfers) and always returns exactly one
  result per request.
- recovery: saves the progress of calls that drop before a work order is
  created and arms a callback to the customer.
"""
