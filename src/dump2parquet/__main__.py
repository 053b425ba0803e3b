from dump2parquet.cli import main

main(prog_name="dump2parquet")
