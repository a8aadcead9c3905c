"""ACME DNS-01 client.

This package is an implementation of the `ACME protocol`_ limited to the
``dns-01`` challenge, see `acmedns.session.Session` for the entry point.

.. _`ACME protocol`: https://datatracker.ietf.org/doc/html/rfc8555

"""
