import sys
import traceback


def main() -> None:
    try:
        from cloudprof import cloudprof_runner

        cloudprof_runner.main()
    except SystemExit:
        raise
    except Exception as exc:
        sys.stderr.write(
            f"cloudprof: could not run the program under the agent: {exc}\n"
        )
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
