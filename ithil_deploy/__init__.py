"""Deployment, configuration and devnet funding tooling for Ithil smart contracts.

- :py:mod:`ithil_deploy.ledger`: persisted contract address book shared with the frontend
- :py:mod:`ithil_deploy.deployment`: deploy-or-attach orchestration
- :py:mod:`ithil_deploy.configuration`: idempotent post-deployment settings
- :py:mod:`ithil_deploy.pipeline`: the full Ithil deployment in dependency order
- :py:mod:`ithil_deploy.funding`: faucet helpers for forked networks

Entry points live in the ``scripts/`` folder.
"""
