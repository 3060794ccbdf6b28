"""
Network gateway application package.

The gateway fronts every network call made by the application, combining:
- Caching: a bounded, time-expiring cache for warm reads
- Scheduling: a debounced batch scheduler that coalesces call start times
- Failures: a total classifier turning transport outcomes into typed failures

Structure:
- app.gateway: NetworkGateway orchestration and the create_gateway factory.
- app.adapters: Transport contract and the httpx implementation.
- app.caching: BoundedTTLCache and cache-key helpers.
- app.scheduling: BatchScheduler.
- app.failures: FailureKind, Failure, Result and FailureClassifier.
"""
