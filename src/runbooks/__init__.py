"""Runbook controller.

Reconciles declarative Runbook resources: every pass fetches the resource,
guards deletion behind a finalizer, renders the runbook content, validates
it, publishes it to the declared outputs and records the outcome on the
resource status.

Outputs:
- markdown: `<destination>/<alertName>.md`
- html: `<destination>/<alertName>.html`
- api: POST `<destination>/runbooks`
"""
