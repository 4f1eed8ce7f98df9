import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path

import click

from . import __version__
from .core import ConfigManager, FeatureParseError, ParseError, QARunnerError
from .executor import FeatureRunner, ReportCollector, StepDefinitionRegistry
from .gherkin import GherkinLexer, supported_languages
from .hooks import HookRegistry


@click.group()
@click.option('--config', '-c', type=click.Path(), help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """QA Runner - BDD execution core"""
    # Load configuration
    config_path = Path(config) if config else None
    manager = ConfigManager(config_path)
    ctx.obj = manager

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if verbose else str(manager.get('general.log_level', 'INFO')).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@cli.command()
def version():
    """Show version information"""
    click.echo(f"QA Runner v{__version__}")
    click.echo(f"Gherkin languages: {', '.join(supported_languages())}")


@cli.command()
@click.argument('feature_file', type=click.Path(exists=True))
@click.option('--language', '-l', default='en', help='Initial Gherkin language')
def tokenize(feature_file, language):
    """Print the token stream of a feature file"""
    content = Path(feature_file).read_text(encoding='utf-8')
    try:
        tokens = GherkinLexer(language).tokenize(content, feature_file)
    except ParseError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    for token in tokens:
        click.echo(f"{token.line:>4}:{token.column:<3} {token.type.value:<20} {token.value}")


@cli.command()
@click.argument('feature_files', nargs=-1, required=True, type=click.Path(exists=True))
def validate(feature_files):
    """Check the structure of feature files"""
    failed = False
    for feature_file in feature_files:
        content = Path(feature_file).read_text(encoding='utf-8')
        try:
            tokens = GherkinLexer().tokenize(content, feature_file)
        except ParseError as e:
            click.echo(f"❌ {e}", err=True)
            failed = True
            continue

        errors = GherkinLexer.validate_token_sequence(tokens, feature_file)
        if errors:
            failed = True
            for error in errors:
                click.echo(f"❌ {error}", err=True)
            continue

        analysis = GherkinLexer.analyze_tokens(tokens)
        click.echo(f"✅ {feature_file}: {analysis['scenarios']} scenario(s), {analysis['steps']} step(s)")

    if failed:
        sys.exit(1)


def _load_step_modules(modules, step_registry, hook_registry):
    sys.path.insert(0, str(Path.cwd()))
    for module_name in modules:
        module = importlib.import_module(module_name)
        steps = step_registry.register_from_module(module)
        hooks = hook_registry.register_from_module(module)
        click.echo(f"📦 {module_name}: {steps} step definition(s), {hooks} hook(s)")


@cli.command()
@click.argument('paths', nargs=-1, type=click.Path(exists=True))
@click.option('--steps', '-s', 'step_modules', multiple=True,
              help='Module holding step definitions and hooks (repeatable)')
@click.option('--parallel/--sequential', default=None, help='Run scenarios concurrently')
@click.option('--workers', '-w', type=int, help='Maximum parallel workers')
@click.option('--retry', '-r', type=int, help='Retry failed scenarios this many times')
@click.option('--tags', '-t', help='Tag expression, e.g. "@smoke and not @slow"')
@click.option('--browser-resources', is_flag=True, help='Give each scenario a Playwright page')
@click.option('--json-report', is_flag=True, help='Write a JSON report')
@click.pass_context
def run(ctx, paths, step_modules, parallel, workers, retry, tags, browser_resources, json_report):
    """Run feature files or directories"""
    manager: ConfigManager = ctx.obj
    config = manager.runner_config(
        parallel=parallel,
        max_workers=workers,
        retry_failed=True if retry else None,
        retry_count=retry,
        tag_expression=tags,
    )

    step_registry = StepDefinitionRegistry()
    hook_registry = HookRegistry()
    _load_step_modules(step_modules, step_registry, hook_registry)

    feature_files = []
    for path in paths or [manager.get('general.features_dir', 'features')]:
        path = Path(path)
        if not path.exists():
            click.echo(f"❌ Path not found: {path}", err=True)
            sys.exit(1)
        if path.is_dir():
            feature_files.extend(sorted(path.glob('**/*.feature')))
        else:
            feature_files.append(path)

    if not feature_files:
        click.echo("No feature files found", err=True)
        sys.exit(1)

    resource_factory = None
    if browser_resources:
        from .executor.browser import PlaywrightResources
        browser_config = manager.get_section('browser')
        resource_factory = PlaywrightResources(
            browser=config.browser,
            headless=browser_config.get('headless', True),
            slow_mo=browser_config.get('slow_mo', 0),
            viewport=browser_config.get('viewport'),
            screenshot_dir=browser_config.get('screenshot_dir', 'screenshots'),
        )

    collector = ReportCollector(manager.get('reporter.output_dir', 'test-results'))
    runner = FeatureRunner(
        config,
        step_registry=step_registry,
        hook_registry=hook_registry,
        resource_factory=resource_factory,
        sink=collector,
    )

    click.echo(f"🚀 Running {len(feature_files)} feature file(s)")
    try:
        result = asyncio.run(runner.run(feature_files))
    except FeatureParseError as e:
        for error in e.errors:
            click.echo(f"❌ {error}", err=True)
        sys.exit(2)
    except QARunnerError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(2)

    for feature in result.features:
        icon = "✅" if feature.status.value == "passed" else "❌" if feature.status.value == "failed" else "⏭️"
        click.echo(f"{icon} {feature.name}: {feature.metrics.passed_scenarios}/"
                   f"{feature.metrics.total_scenarios} passed")
        for scenario in feature.scenarios:
            if scenario.error is not None:
                click.echo(f"   - {scenario.name}: {scenario.error.message}")

    click.echo(json.dumps(result.summary['scenarios']))

    if json_report:
        report_path = collector.generate_report({'run': result.summary})
        click.echo(f"📊 Report generated: {report_path}")

    sys.exit(0 if result.success else 1)


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
