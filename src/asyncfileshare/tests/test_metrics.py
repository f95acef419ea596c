import pytest

from asyncfileshare import (
    AuthorizationFailedError,
    InvalidConfigurationError,
    MetricsConfig,
    MetricsGranularity,
    MetricsLevel,
)

HOUR = MetricsGranularity.HOUR
MINUTE = MetricsGranularity.MINUTE


@pytest.mark.asyncio
async def test_metrics_round_trip(account):
    service = account.file_service()
    hour = MetricsConfig(HOUR, MetricsLevel.SERVICE_AND_API, retention_days=14)
    minute = MetricsConfig(MINUTE, MetricsLevel.SERVICE, retention_days=7)

    await service.set_service_properties(hour, minute)
    properties = await service.get_service_properties()

    assert properties.get(HOUR).level is MetricsLevel.SERVICE_AND_API
    assert properties.get(HOUR).retention_days == 14
    assert properties.minute_metrics.level is MetricsLevel.SERVICE
    assert properties.minute_metrics.retention_days == 7


@pytest.mark.asyncio
@pytest.mark.local
async def test_defaults_before_any_settings(local_account):
    properties = await local_account.file_service().get_service_properties()
    assert properties.hour_metrics == MetricsConfig(HOUR)
    assert properties.minute_metrics == MetricsConfig(MINUTE)


@pytest.mark.asyncio
@pytest.mark.local
async def test_setting_one_granularity_keeps_the_other(local_account):
    service = local_account.file_service()
    await service.set_service_properties(
        MetricsConfig(MINUTE, MetricsLevel.SERVICE, retention_days=3)
    )
    await service.set_service_properties(
        MetricsConfig(HOUR, MetricsLevel.SERVICE_AND_API, retention_days=30)
    )
    properties = await service.get_service_properties()
    assert properties.minute_metrics == MetricsConfig(MINUTE, MetricsLevel.SERVICE, 3)
    assert properties.hour_metrics == MetricsConfig(HOUR, MetricsLevel.SERVICE_AND_API, 30)


@pytest.mark.asyncio
@pytest.mark.local
@pytest.mark.parametrize("retention_days", [0, 365, None])
async def test_retention_bounds_accepted(local_account, retention_days):
    service = local_account.file_service()
    await service.set_service_properties(
        MetricsConfig(HOUR, MetricsLevel.SERVICE, retention_days=retention_days)
    )
    assert (await service.get_service_properties()).hour_metrics.retention_days == retention_days


@pytest.mark.asyncio
@pytest.mark.local
@pytest.mark.parametrize("retention_days", [-1, 366, 400])
async def test_invalid_retention_never_reaches_backend(
    local_account, emulator, monkeypatch, retention_days
):
    calls = []

    async def spy(service, metrics):
        calls.append(metrics)

    monkeypatch.setattr(emulator, "set_service_properties", spy)
    with pytest.raises(InvalidConfigurationError):
        await local_account.file_service().set_service_properties(
            MetricsConfig(HOUR, MetricsLevel.SERVICE_AND_API, retention_days=retention_days)
        )
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.local
async def test_duplicate_granularity_is_rejected(local_account, emulator, monkeypatch):
    calls = []

    async def spy(service, metrics):
        calls.append(metrics)

    monkeypatch.setattr(emulator, "set_service_properties", spy)
    with pytest.raises(InvalidConfigurationError):
        await local_account.file_service().set_service_properties(
            MetricsConfig(HOUR, MetricsLevel.SERVICE),
            MetricsConfig(HOUR, MetricsLevel.NONE),
        )
    await local_account.file_service().set_service_properties()
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.local
async def test_service_properties_need_the_key(local_account):
    service = local_account.file_service().with_sas("sv=2024&sr=s&sp=r&sig=x")
    with pytest.raises(AuthorizationFailedError):
        await service.get_service_properties()
