import asyncio
import logging
from pathlib import Path

from qa_runner.core import RunnerConfig
from qa_runner.executor import FeatureRunner, ReportCollector, StepDefinitionRegistry
from qa_runner.hooks import HookRegistry

PRICES = {"apple": 0.5, "pear": 0.75, "banana": 0.25}


async def main():
    """Example of using the Feature Runner programmatically"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    steps = StepDefinitionRegistry()
    hooks = HookRegistry()

    @steps.given(r'an empty cart')
    def empty_cart(context):
        context.store_data('cart', [])

    @steps.when(r'I add (\d+) "([^"]*)"')
    async def add_items(context, count, item):
        await asyncio.sleep(0.01)
        context.get_data('cart').extend([item] * count)

    @steps.then(r'the cart holds (\d+) item\(s\)')
    def cart_holds(context, count):
        assert len(context.get_data('cart')) == count

    @steps.then(r'the total is (\S+)')
    def total_is(context, expected):
        total = sum(PRICES[item] for item in context.get_data('cart'))
        assert total == expected, f"total {total} != {expected}"

    @hooks.before(tags=["@smoke"])
    def announce(context):
        print(f"Smoke scenario starting: {context.scenario_name}")

    @hooks.after_all
    def done(context):
        print(f"Finished {len(context.features)} feature(s)")

    # Configure the runner
    config = RunnerConfig(parallel=True, max_workers=3, retry_delay=100)
    collector = ReportCollector("test-results")
    runner = FeatureRunner(config, step_registry=steps, hook_registry=hooks, sink=collector)

    feature_dir = Path(__file__).parent / "features"
    result = await runner.run(sorted(feature_dir.glob("*.feature")))

    for feature in result.features:
        print(f"\nFeature: {feature.name} - {feature.status.value}")
        for scenario in feature.scenarios:
            print(f"  Scenario: {scenario.name} - {scenario.status.value} (retries: {scenario.retries})")
            if scenario.error:
                print(f"    Error: {scenario.error.message}")

    print(f"\nSummary: {result.summary['scenarios']}")
    print(f"Report: {collector.generate_report({'run': result.summary})}")


if __name__ == '__main__':
    asyncio.run(main())
