"""
                        Services Module

Business services and the external collaborators they talk to. Each
collaborator has a development implementation and a real one, chosen by
ENV_MODE through a small factory.

Services:
    - lifecycle: order status state machine (sole writer of status)
    - orders: order store (in-memory or SQL)
    - payment: payment confirmation (mock or Stripe)
    - auth: caller identity (request headers or JWT)
"""
