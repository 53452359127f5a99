import argparse
import asyncio
import sys
import uuid
from datetime import datetime
from typing import Optional, List

from rule_anon import RuleAnonApp
from rule_anon.common.constants import RUNS_BASE_DIR, DEFAULT_JOBS
from rule_anon.common.dto import AnonResult, RunOptions
from rule_anon.common.enums import AnonMode, VerboseOptions, ResultCode
from rule_anon.common.query_builder import DIALECTS, DIALECT_ALIASES
from rule_anon.common.utils import parse_comma_separated_list
from rule_anon.version import __version__


def common_parser():
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config",
        help="""Path to configuration file of rule_anon in YAML""",
        type=str,
        default="",
    )
    parser.add_argument(
        "--version",
        help="""Show the version number and exit""",
        action="store_true",
    )
    parser.add_argument(
        "--verbose",
        dest="verbose",
        choices=list(v.value for v in VerboseOptions),
        default=VerboseOptions.INFO.value,
        help="""Sets the log verbosity level: "info", "debug", "error". (default: %(default)s)""",
    )
    parser.add_argument(
        "--debug",
        help="""Enables debug mode (equivalent to "--verbose=debug") and adds extra debug logs.""",
        action="store_true",
    )
    return parser


def db_parser():
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--db-host",
        type=str,
        required=True,
        help="""Database host""",
    )
    parser.add_argument(
        "--db-port",
        type=int,
        default=5432,
        help="""Database port""",
    )
    parser.add_argument(
        "--db-name",
        type=str,
        required=True,
        help="""Database name""",
    )
    parser.add_argument(
        "--db-user",
        type=str,
        required=True,
        help="""Database user""",
    )
    parser.add_argument(
        "--db-user-password",
        type=str,
        default="",
        help="""Database user password. PGPASSWORD is used when empty""",
    )
    parser.add_argument(
        "--db-passfile",
        type=str,
        default="",
        help="""Path to a file containing the password used for authentication""",
    )
    parser.add_argument(
        "--db-ssl-key-file",
        type=str,
        default="",
        help="""Path to the client SSL key file for secure connections""",
    )
    parser.add_argument(
        "--db-ssl-cert-file",
        type=str,
        default="",
        help="""Path to the client SSL certificate file""",
    )
    parser.add_argument(
        "--db-ssl-ca-file",
        type=str,
        default="",
        help="""Path to the CA certificate used to verify the server's certificate""",
    )
    parser.add_argument(
        "--application-name-suffix",
        type=str,
        default="",
        help="""Appends suffix for connection name. Just for comfortable automation.""",
    )
    return parser


def rules_parser():
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument(
        "--rules-file",
        dest="rules_files",
        type=parse_comma_separated_list,
        required=True,
        help="""Input file or file list with anonymization rules (YAML or python dictionary). Rules for the same column in later files win.""",
    )
    p.add_argument(
        "--dialect",
        choices=sorted([*DIALECTS, *DIALECT_ALIASES]),
        default=None,
        help="""SQL dialect used to build queries. Overrides config value. (default: default)""",
    )
    p.add_argument(
        "--schema",
        type=str,
        default=None,
        help="""Schema for tables declared without one. Overrides config value.""",
    )
    p.add_argument(
        "--seed",
        type=int,
        default=None,
        help="""Seed of the random source, makes generated values reproducible. Overrides config value.""",
    )
    return p


def anonymize_parser():
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument(
        "--limit",
        type=int,
        default=None,
        help="""Rows per page, 0 processes every table in one page. Overrides config value. (default: 0)""",
    )
    p.add_argument(
        "--jobs",
        type=int,
        default=None,
        help=f"""Number of tables processed concurrently. Overrides config value. (default: {DEFAULT_JOBS})""",
    )
    return p


def view_data_parser():
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument(
        "--schema-name",
        type=str,
        default="",
        help="""Schema name.""",
    )
    p.add_argument(
        "--table-name",
        type=str,
        required=True,
        help="""Table name.""",
    )
    p.add_argument(
        "--limit",
        type=int,
        default=100,
        help="""Number of rows to display. (default: %(default)s)""",
    )
    p.add_argument(
        "--offset",
        type=int,
        default=0,
        help="""Row offset for pagination. (default: %(default)s)""",
    )
    p.add_argument(
        "--json",
        action="store_true",
        help="""Outputs results in JSON format instead of a table.""",
    )
    return p


def view_functions_parser():
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument(
        "--json",
        action="store_true",
        help="""Outputs results in JSON format instead of a table.""",
    )
    return p


def get_arg_parser():
    parser = argparse.ArgumentParser(
        prog="rule_anon",
        description="Rule driven anonymization of database columns",
    )

    sub = parser.add_subparsers(dest="mode", help="Work mode", required=True)

    sub.add_parser(
        AnonMode.ANONYMIZE.value,
        parents=[common_parser(), db_parser(), rules_parser(), anonymize_parser()],
        help="""Replaces values of ruled columns in place with generated values.""",
    )

    sub.add_parser(
        AnonMode.VIEW_DATA.value,
        parents=[common_parser(), db_parser(), rules_parser(), view_data_parser()],
        help="""Displays table data next to generated values without writing anything.""",
    )

    sub.add_parser(
        AnonMode.VIEW_FUNCTIONS.value,
        parents=[common_parser(), view_functions_parser()],
        help="""Displays available generator functions and their parameters.""",
    )

    return parser


def build_run_options(cli_run_params: Optional[List[str]] = None) -> RunOptions:
    if cli_run_params is None:
        cli_run_params = sys.argv[1:]

    # Handle --version before subcommand parsing
    if "--version" in cli_run_params:
        print("Version %s" % __version__)
        sys.exit(0)

    parser = get_arg_parser()
    args_parsed = parser.parse_args(cli_run_params)
    args_dict = vars(args_parsed)

    if args_dict.get("debug") or args_dict.get("verbose") == VerboseOptions.DEBUG.value:
        args_dict["debug"] = True
        args_dict["verbose"] = VerboseOptions.DEBUG.value

    if args_dict.get('verbose'):
        args_dict['verbose'] = VerboseOptions(args_dict['verbose'])

    internal_operation_id = str(uuid.uuid4())
    start_date = datetime.today()
    run_dir = str(
        RUNS_BASE_DIR /
        str(start_date.year) /
        str(start_date.month) /
        str(start_date.day) /
        internal_operation_id
    )

    args_dict.update({
        'rule_anon_version': __version__,
        'internal_operation_id': internal_operation_id,
        'run_dir': run_dir,
        'mode': AnonMode(args_dict['mode']),
    })
    return RunOptions(**args_dict)


async def run_rule_anon(cli_run_params: Optional[List[str]] = None) -> AnonResult:
    """
    Run rule_anon
    :param cli_run_params: list of params in command line format
    :return: result of rule_anon
    """
    options = build_run_options(cli_run_params)
    result = await RuleAnonApp(options).run()
    return result


def main(argv=None):
    result = asyncio.run(run_rule_anon(argv))
    if result.result_code == ResultCode.FAIL:
        sys.exit(1)
