"""Tests for configuration composition."""

import pytest

from pytest_acctest.compose import (
    Block,
    compose_case,
    has_provider_block,
    has_terraform_block,
    merge_config,
    scan_blocks,
)
from pytest_acctest.schema import Case, ExternalProvider, Protocol5Factory, Protocol6Factory

RESOURCE_CONFIG = '''
resource "test_test" "test" {}
'''

TWO_RESOURCES_CONFIG = '''
resource "externaltest_test" "test" {}

resource "localtest_test" "test" {}
'''

PINNED_LAYOUT = '''terraform {
  required_providers {
    test = {
      source = "registry.terraform.io/hashicorp/test"
      version = "1.2.3"
    }
  }
}

provider "test" {}


resource "test_test" "test" {}
'''

SOURCE_LAYOUT = '''terraform {
  required_providers {
    test = {
      source = "registry.terraform.io/hashicorp/test"
    }
  }
}

provider "test" {}


resource "test_test" "test" {}
'''

VERSION_LAYOUT = '''terraform {
  required_providers {
    test = {
      version = "1.2.3"
    }
  }
}

provider "test" {}


resource "test_test" "test" {}
'''

UNPINNED_LAYOUT = '''provider "test" {}

resource "test_test" "test" {}
'''

MIXED_LAYOUT = '''terraform {
  required_providers {
    externaltest = {
      source = "registry.terraform.io/hashicorp/externaltest"
      version = "1.2.3"
    }
  }
}

provider "externaltest" {}


resource "externaltest_test" "test" {}

resource "localtest_test" "test" {}
'''

SKIPPED_LAYOUT = '''terraform {
  required_providers {
    test = {
      source = "registry.terraform.io/hashicorp/test"
      version = "1.2.3"
    }
  }
}


resource "test_test" "test" {}
'''

TERRAFORM_BLOCK_CONFIG = '''
terraform {
  required_providers {
    test = {
      source = "registry.terraform.io/hashicorp/test"
      version = "1.2.3"
    }
  }
}

resource "test_test" "test" {}
'''

PINNED = ExternalProvider(source='registry.terraform.io/hashicorp/test', version='1.2.3')


def _factory() -> dict:
    return {}


@pytest.mark.parametrize('config, expected', (
    pytest.param('', False, id='no config'),
    pytest.param('''
resource "test_test" "test" {
  provider = test.test
}
''', False, id='provider meta-attribute'),
    pytest.param('''
resource "test_test" "test" {
  test = {
    provider = {
      test = true
    }
  }
}
''', False, id='provider object attribute'),
    pytest.param('''
resource "test_test" "test" {
  test = {
    provider = "test"
  }
}
''', False, id='provider string attribute'),
    pytest.param('''
provider "test" {
  test = true
}

resource "test_test" "test" {}
''', True, id='quoted block with attributes'),
    pytest.param('''
provider test {
  test = true
}

resource "test_test" "test" {}
''', True, id='unquoted block with attributes'),
    pytest.param('''
provider "test" {}

resource "test_test" "test" {}
''', True, id='quoted block without attributes'),
    pytest.param('''
provider test {}

resource "test_test" "test" {}
''', True, id='unquoted block without attributes'),
    pytest.param('''
resource "test_test" "test" {
  description = "provider \\"test\\" {}"
}
''', False, id='block inside a string'),
    pytest.param('''
# provider "test" {}
// provider "test" {}
/*
provider "test" {}
*/
resource "test_test" "test" {}
''', False, id='commented out blocks'),
    pytest.param('''
resource "test_test" "test" {
  script = <<-EOT
provider "test" {
EOT
}

provider "test" {}
''', True, id='block after a heredoc'),
    pytest.param('''
resource "test_test" "test" {
  name = "${var.prefix}-{"
}
''', False, id='braces inside template'),
))
def test_has_provider_block(config: str, expected: bool) -> None:
    """Detect top-level provider blocks only."""
    assert has_provider_block(config) is expected


def test_has_provider_block_by_name() -> None:
    """Match provider blocks by their label."""
    config = 'provider "aws" {\n  region = "eu-west-1"\n}\n'

    assert has_provider_block(config, 'aws')
    assert not has_provider_block(config, 'google')


def test_scan_blocks() -> None:
    """Report top-level blocks with their labels in declaration order."""
    config = '''
terraform {
  required_version = ">= 1.0"
}

locals = {
  value = 1
}

resource "test_test" "one" {
  nested {
    deep = true
  }
}

data "test_data" "two" {}
'''

    assert scan_blocks(config) == [
        Block(type='terraform'),
        Block(type='resource', labels=('test_test', 'one')),
        Block(type='data', labels=('test_data', 'two')),
    ]


def test_has_terraform_block() -> None:
    """Detect a top-level settings block."""
    assert has_terraform_block(TERRAFORM_BLOCK_CONFIG)
    assert not has_terraform_block(RESOURCE_CONFIG)


@pytest.mark.parametrize('case_providers, step_providers, expected', (
    pytest.param({'test': PINNED}, {}, PINNED_LAYOUT, id='case source and version'),
    pytest.param({}, {'test': PINNED}, PINNED_LAYOUT, id='step source and version'),
    pytest.param(
        {'test': ExternalProvider(source='registry.terraform.io/hashicorp/test')}, {},
        SOURCE_LAYOUT, id='source only',
    ),
    pytest.param(
        {'test': ExternalProvider(version='1.2.3')}, {},
        VERSION_LAYOUT, id='version only',
    ),
    pytest.param({'test': ExternalProvider()}, {}, UNPINNED_LAYOUT, id='case unpinned'),
    pytest.param({}, {'test': ExternalProvider()}, UNPINNED_LAYOUT, id='step unpinned'),
    pytest.param(
        {'test': ExternalProvider(version='0.1.0')}, {'test': PINNED},
        PINNED_LAYOUT, id='step overrides case',
    ),
))
def test_merge_config(case_providers: dict, step_providers: dict, expected: str) -> None:
    """Compose the exact layout of settings, provider blocks and text."""
    composed = merge_config(case_providers, step_providers, RESOURCE_CONFIG)

    assert composed.strip() == expected.strip()
    assert composed.endswith(RESOURCE_CONFIG)


@pytest.mark.parametrize('factory', (
    pytest.param(Protocol5Factory(factory=_factory), id='protocol5'),
    pytest.param(Protocol6Factory(factory=_factory), id='protocol6'),
))
def test_merge_config_with_factories(factory: Protocol5Factory | Protocol6Factory) -> None:
    """Synthesize nothing for in-process providers."""
    external = ExternalProvider(
        source='registry.terraform.io/hashicorp/externaltest',
        version='1.2.3',
    )

    assert merge_config({'localtest': factory}, {}, RESOURCE_CONFIG) == RESOURCE_CONFIG
    assert merge_config(
        {'externaltest': external, 'localtest': factory}, {},
        TWO_RESOURCES_CONFIG,
    ).strip() == MIXED_LAYOUT.strip()


def test_merge_config_source_without_version() -> None:
    """Separate settings, provider block and text by blank lines."""
    provider = ExternalProvider(source='registry.example/ns/test')
    config = 'resource "test_test" "test" {}\n'

    assert merge_config({'test': provider}, {}, config) == (
        'terraform {\n'
        '  required_providers {\n'
        '    test = {\n'
        '      source = "registry.example/ns/test"\n'
        '    }\n'
        '  }\n'
        '}\n'
        '\n'
        'provider "test" {}\n'
        '\n'
        'resource "test_test" "test" {}\n'
    )


def test_merge_config_skip_provider_block() -> None:
    """Keep the required-providers entry without a provider block."""
    composed = merge_config({'test': PINNED}, {}, RESOURCE_CONFIG, skip_provider_block=True)

    assert composed.strip() == SKIPPED_LAYOUT.strip()
    assert composed.count('required_providers') == 1
    assert 'provider "test"' not in composed


def test_merge_config_existing_provider_block() -> None:
    """Never duplicate a provider block the text already declares."""
    config = 'provider "test" {\n  region = "here"\n}\n'

    composed = merge_config({'test': PINNED, 'other': ExternalProvider()}, {}, config)

    assert composed.count('provider "test"') == 1
    assert composed.count('provider "other" {}') == 1
    assert 'test = {' in composed


def test_merge_config_existing_terraform_block() -> None:
    """Use a text with its own settings block as-is."""
    assert merge_config({}, {'test': PINNED}, TERRAFORM_BLOCK_CONFIG) == TERRAFORM_BLOCK_CONFIG


def test_merge_config_provider_order() -> None:
    """Emit entries and blocks in provider name order."""
    composed = merge_config(
        {'zeta': ExternalProvider(version='1.0.0')},
        {'alpha': ExternalProvider(version='2.0.0')},
        RESOURCE_CONFIG,
    )

    assert composed.index('alpha = {') < composed.index('zeta = {')
    assert composed.index('provider "alpha"') < composed.index('provider "zeta"')


def test_compose_case() -> None:
    """Reuse the previous configuration for steps without their own."""
    case = Case.model_validate({
        'providers': {'test': {'version': '1.2.3'}},
        'steps': [
            {'config': RESOURCE_CONFIG},
            {'refreshState': True},
            {'config': RESOURCE_CONFIG, 'providers': {'test': {}}},
        ],
    })

    first, second, third = compose_case(case)

    assert first == second
    assert 'required_providers' in first
    assert third == f'provider "test" {{}}\n{RESOURCE_CONFIG}'
