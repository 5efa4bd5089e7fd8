"""Application services for the delorean CLI.

Services implement the release workflows, coordinating between the domain
layer (core/) and infrastructure (git/, platform/, remote APIs).

- olm: manifest graph checks, supported versions, CSV edits
- release: channel promotion and repository tagging
- report: idempotent imports of test reports into external sinks
- aws: sweeping resources left behind by deleted clusters
"""
