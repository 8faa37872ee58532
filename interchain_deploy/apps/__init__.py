"""Contracts builders for the bundled applications.

- :py:mod:`interchain_deploy.apps.ism_factories` security module factories
- :py:mod:`interchain_deploy.apps.core` mailbox, gas paymaster and validator announce
- :py:mod:`interchain_deploy.apps.helloworld` plain router application
- :py:mod:`interchain_deploy.apps.middleware` proxied interchain accounts and queries routers
"""
